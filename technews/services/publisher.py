# technews/services/publisher.py
"""
Publication adapter.

Creates one destination page per summarized item. The SyncRecord table is
the idempotency check and is read before any call to the destination, so
an item is never published twice even across crashed or overlapping runs.

The destination schema is checked once per adapter instance. If the check
fails, pages are built with the title only for the rest of the adapter's
life.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from technews import models
from technews.destinations.base import (
    BlockType,
    ContentBlock,
    DestinationService,
    PageProperty,
    PropertyType,
)
from technews.logging_config import ProgressTracker
from technews.models import Outcome, Stage
from technews.services.resilience import (
    DEFAULT_RETRY_POLICY,
    IntervalGate,
    RetryPolicy,
    retry_call,
)
from technews.services.stage_ledger import StageLedger

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[str, PropertyType] = {
    "Source": PropertyType.SELECT,
    "Published Date": PropertyType.DATE,
    "Processed Date": PropertyType.DATE,
    "URL": PropertyType.URL,
}


@dataclass
class PublishResult:
    item_id: str
    success: bool
    skipped: bool = False
    page_id: str | None = None
    error: str | None = None


@dataclass
class BatchPublishResult:
    processed: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    page_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def build_item_page(item: models.Item, summary: models.Summary, full_schema: bool = True):
    """Destination-neutral properties and content blocks for an item page."""
    properties: dict[str, PageProperty] = {
        "title": PageProperty(PropertyType.TITLE, item.title),
    }
    if full_schema:
        properties.update(
            {
                "Source": PageProperty(PropertyType.SELECT, item.source),
                "Published Date": PageProperty(PropertyType.DATE, item.published_at.date()),
                "Processed Date": PageProperty(PropertyType.DATE, models.utc_now().date()),
                "URL": PageProperty(PropertyType.URL, item.source_url),
            }
        )

    blocks = [
        ContentBlock(BlockType.CALLOUT, summary.short_summary, icon="💡"),
        ContentBlock(BlockType.DIVIDER),
        ContentBlock(BlockType.HEADING, "Résumé détaillé"),
    ]
    detailed = summary.detailed_summary or summary.short_summary
    for paragraph in detailed.split("\n\n"):
        if paragraph.strip():
            blocks.append(ContentBlock(BlockType.PARAGRAPH, paragraph.strip()))
    blocks.append(ContentBlock(BlockType.DIVIDER))
    blocks.append(ContentBlock(BlockType.LINK, "Lire l'article original", url=item.source_url))
    return properties, blocks


class PublicationAdapter:
    """Publishes summarized items and records the published stage."""

    def __init__(
        self,
        db: Session,
        destination: DestinationService,
        ledger: StageLedger | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        gate: IntervalGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.destination = destination
        self.ledger = ledger or StageLedger(db)
        self.retry_policy = retry_policy
        self.gate = gate or IntervalGate.per_second(3)
        self._sleep = sleep
        # None until the schema check ran, then True (full) or False (title only)
        self._full_schema: bool | None = None

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def ensure_schema(self) -> bool:
        """Run the schema check once. Returns whether full properties are available."""
        if self._full_schema is not None:
            return self._full_schema
        try:
            retry_call(
                self._gated,
                self.destination.ensure_schema,
                REQUIRED_FIELDS,
                policy=self.retry_policy,
                sleep=self._sleep,
            )
            self._full_schema = True
        except Exception as e:
            logger.warning(
                f"Schema check failed, publishing with title only: {e}",
                extra={"event": "schema_fallback"},
            )
            self._full_schema = False
        return self._full_schema

    def reset_schema_cache(self) -> None:
        self._full_schema = None

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _gated(self, func: Callable, *args, **kwargs):
        self.gate.acquire()
        return func(*args, **kwargs)

    def is_published(self, item_id: str) -> bool:
        return self.db.get(models.SyncRecord, item_id) is not None

    def _fail(self, item_id: str, detail: str) -> PublishResult:
        logger.warning(
            f"Publication failed for {item_id}: {detail}",
            extra={"event": "publish_failed", "item_id": item_id},
        )
        self.ledger.record(item_id, Stage.PUBLISHED, Outcome.FAILED, error_detail=detail)
        return PublishResult(item_id=item_id, success=False, error=detail)

    def publish(self, item: models.Item) -> PublishResult:
        """Publish one item. Item-level failures are recorded, never raised."""
        item_id = item.id

        sync = self.db.get(models.SyncRecord, item_id)
        if sync is not None:
            # Published by an earlier or overlapping run; only the ledger row may be missing
            self.ledger.record(item_id, Stage.PUBLISHED, Outcome.SUCCESS)
            logger.info(
                f"{item_id} already published as {sync.remote_page_id}, skipping",
                extra={"event": "publish_skipped", "item_id": item_id},
            )
            return PublishResult(item_id=item_id, success=True, skipped=True, page_id=sync.remote_page_id)

        summary = self.db.get(models.Summary, item_id)
        if summary is None:
            return self._fail(item_id, "no summary")

        properties, blocks = build_item_page(item, summary, full_schema=self.ensure_schema())

        try:
            page_id = retry_call(
                self._gated,
                self.destination.create_page,
                properties,
                blocks,
                policy=self.retry_policy,
                sleep=self._sleep,
            )
        except Exception as e:
            return self._fail(item_id, f"{type(e).__name__}: {e}")

        self.db.add(models.SyncRecord(item_id=item_id, remote_page_id=page_id, synced_at=models.utc_now()))
        try:
            self.db.commit()
        except IntegrityError:
            # An overlapping run recorded the same item first
            self.db.rollback()
            logger.warning(f"{item_id} was synced concurrently; keeping the first record")
        self.ledger.record(item_id, Stage.PUBLISHED, Outcome.SUCCESS)

        logger.info(
            f"Published {item_id} as {page_id}",
            extra={"event": "publish_complete", "item_id": item_id},
        )
        return PublishResult(item_id=item_id, success=True, page_id=page_id)

    def publish_batch(self, items: Sequence[models.Item]) -> BatchPublishResult:
        """Publish items one by one, paced by the adapter's gate."""
        batch = BatchPublishResult()
        if not items:
            return batch

        tracker = ProgressTracker(total=len(items), stage=Stage.PUBLISHED.value, log_every=5)
        for item in items:
            result = self.publish(item)
            batch.processed += 1
            if result.skipped:
                batch.skipped += 1
            elif result.success:
                batch.successful += 1
                batch.page_ids.append(result.page_id)
            else:
                batch.failed += 1
                batch.errors.append(f"{result.item_id}: {result.error}")
            tracker.increment(success=result.success)

        tracker.finish()
        return batch
