"""
Unit tests for the publication adapter.
"""

import pytest

from technews import models
from technews.destinations.base import BlockType, PropertyType
from technews.models import Outcome, Stage
from technews.services.publisher import REQUIRED_FIELDS, PublicationAdapter, build_item_page
from technews.services.resilience import IntervalGate, PermanentServiceError, RateLimitError
from technews.services.stage_ledger import StageLedger


@pytest.fixture
def summarized_item(db, make_item):
    """An item with a summary, eligible for publication."""

    def _make(detailed="Premier paragraphe.\n\nSecond paragraphe.", **kwargs):
        item = make_item(**kwargs)
        ledger = StageLedger(db)
        ledger.record(item.id, Stage.INGESTED, Outcome.SUCCESS)
        ledger.record(item.id, Stage.FILTERED, Outcome.SUCCESS)
        db.add(models.Summary(item_id=item.id, short_summary="Résumé court.", detailed_summary=detailed))
        db.commit()
        ledger.record(item.id, Stage.SUMMARIZED, Outcome.SUCCESS)
        return item

    return _make


@pytest.fixture
def make_adapter(db, no_wait_policy, sleeps):
    def _make(destination):
        return PublicationAdapter(
            db,
            destination,
            retry_policy=no_wait_policy,
            gate=IntervalGate(0.0, sleep=sleeps),
            sleep=sleeps,
        )

    return _make


class TestBuildItemPage:
    def test_full_schema(self, db, summarized_item):
        item = summarized_item(title="NVIDIA unveils new AI chip")
        properties, blocks = build_item_page(item, db.get(models.Summary, item.id))

        assert properties["title"].value == "NVIDIA unveils new AI chip"
        assert set(properties) == {"title", *REQUIRED_FIELDS}
        assert properties["URL"].type == PropertyType.URL
        assert [b.type for b in blocks] == [
            BlockType.CALLOUT,
            BlockType.DIVIDER,
            BlockType.HEADING,
            BlockType.PARAGRAPH,
            BlockType.PARAGRAPH,
            BlockType.DIVIDER,
            BlockType.LINK,
        ]
        assert blocks[0].text == "Résumé court."
        assert blocks[-1].url == item.source_url

    def test_title_only(self, db, summarized_item):
        item = summarized_item()
        properties, _ = build_item_page(item, db.get(models.Summary, item.id), full_schema=False)
        assert list(properties) == ["title"]


class TestPublish:
    def test_publish_creates_page_sync_record_and_ledger(self, db, summarized_item, make_destination, make_adapter):
        item = summarized_item()
        destination = make_destination()

        result = make_adapter(destination).publish(item)

        assert result.success and not result.skipped
        assert result.page_id == "page-1"
        assert db.get(models.SyncRecord, item.id).remote_page_id == "page-1"
        ledger = StageLedger(db)
        assert ledger.has_success(item.id, Stage.PUBLISHED)
        assert ledger.items_eligible_for(Stage.PUBLISHED) == []

    def test_already_synced_item_is_not_republished(self, db, summarized_item, make_destination, make_adapter):
        """A page was created but the run died before the ledger write: the next run only records success."""
        item = summarized_item()
        db.add(models.SyncRecord(item_id=item.id, remote_page_id="page-earlier"))
        db.commit()
        destination = make_destination()

        result = make_adapter(destination).publish(item)

        assert result.skipped
        assert result.page_id == "page-earlier"
        assert destination.pages == []
        assert StageLedger(db).has_success(item.id, Stage.PUBLISHED)

    def test_missing_summary_parks_item(self, db, make_item, make_destination, make_adapter):
        item = make_item()
        destination = make_destination()

        result = make_adapter(destination).publish(item)

        assert not result.success
        assert destination.pages == []
        event = StageLedger(db).history(item.id)[-1]
        assert (event.stage, event.outcome, event.error_detail) == ("published", "failed", "no summary")

    def test_transient_failure_retried(self, db, summarized_item, make_destination, make_adapter):
        item = summarized_item()
        destination = make_destination(fail_pages=[RateLimitError("429")])

        result = make_adapter(destination).publish(item)

        assert result.success
        assert len(destination.pages) == 1

    def test_permanent_failure_parks_item(self, db, summarized_item, make_destination, make_adapter):
        item = summarized_item()
        destination = make_destination(fail_pages=[PermanentServiceError("400 validation_error")])

        result = make_adapter(destination).publish(item)

        assert not result.success
        assert db.get(models.SyncRecord, item.id) is None
        ledger = StageLedger(db)
        assert ledger.latest_outcome(item.id, Stage.PUBLISHED) == Outcome.FAILED
        assert "validation_error" in ledger.history(item.id)[-1].error_detail


class TestSchema:
    def test_schema_checked_once(self, summarized_item, make_destination, make_adapter):
        destination = make_destination()
        adapter = make_adapter(destination)

        adapter.publish_batch([summarized_item(), summarized_item()])

        assert len(destination.schema_calls) == 1
        assert destination.schema_calls[0][0] == REQUIRED_FIELDS

    def test_schema_failure_falls_back_to_title_only(self, summarized_item, make_destination, make_adapter):
        destination = make_destination(fail_schema=PermanentServiceError("403"))
        adapter = make_adapter(destination)

        result = adapter.publish(summarized_item())

        assert result.success
        assert list(destination.pages[0]["properties"]) == ["title"]

    def test_reset_schema_cache(self, make_destination, make_adapter):
        destination = make_destination()
        adapter = make_adapter(destination)

        assert adapter.ensure_schema() is True
        assert adapter.ensure_schema() is True
        adapter.reset_schema_cache()
        adapter.ensure_schema()

        assert len(destination.schema_calls) == 2


class TestPublishBatch:
    def test_batch_counts(self, db, summarized_item, make_item, make_destination, make_adapter):
        ok = summarized_item()
        synced = summarized_item()
        db.add(models.SyncRecord(item_id=synced.id, remote_page_id="page-old"))
        db.commit()
        no_summary = make_item()

        result = make_adapter(make_destination()).publish_batch([ok, synced, no_summary])

        assert (result.processed, result.successful, result.skipped, result.failed) == (3, 1, 1, 1)
        assert result.page_ids == ["page-1"]

    def test_gate_spaces_requests(self, summarized_item, make_destination, db, no_wait_policy):
        clock = {"now": 0.0}
        waits = []

        def sleep(seconds):
            waits.append(seconds)
            clock["now"] += seconds

        adapter = PublicationAdapter(
            db,
            make_destination(),
            retry_policy=no_wait_policy,
            gate=IntervalGate.per_second(2, clock=lambda: clock["now"], sleep=sleep),
            sleep=sleep,
        )

        adapter.publish_batch([summarized_item(), summarized_item()])

        # schema check, page 1, page 2: two waits of half a second
        assert waits == [0.5, 0.5]
