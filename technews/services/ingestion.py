# technews/services/ingestion.py
"""
Ingestion service.

Two steps, run in order by the pipeline:

1. fetch: pull candidates from every configured feed, drop URLs already
   stored, and upsert the rest as new items (no ledger rows yet)
2. content: for items eligible for the first stage, backfill a missing
   body from the article page, then record ingested/success

A failed body extraction still records ingested/success, with a note in
the event detail, so the filter can run on the title alone instead of the
item waiting forever on a page that never loads.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from technews.models import Outcome, Stage
from technews.services.body_extractor import BodyExtractor
from technews.services.feeds import DEFAULT_FEEDS, CandidateItem, FeedConfig, RssFeedFetcher
from technews.services.item_store import ConflictError, ItemStore, is_substantial
from technews.services.stage_ledger import StageLedger

logger = logging.getLogger(__name__)

TITLE_ONLY_DETAIL = "body extraction failed; filtering on title only"


@dataclass
class FetchResult:
    fetched: int = 0
    new: int = 0
    duplicates: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class ContentResult:
    processed: int = 0
    extracted: int = 0
    title_only: int = 0


class IngestionService:
    """Feed ingestion and first-stage content processing."""

    def __init__(
        self,
        db: Session,
        fetcher: RssFeedFetcher | None = None,
        extractor: BodyExtractor | None = None,
        feeds: Sequence[FeedConfig] = DEFAULT_FEEDS,
        store: ItemStore | None = None,
        ledger: StageLedger | None = None,
    ):
        self.db = db
        self.fetcher = fetcher or RssFeedFetcher()
        self.extractor = extractor or BodyExtractor()
        self.feeds = list(feeds)
        self.store = store or ItemStore(db)
        self.ledger = ledger or StageLedger(db)

    # -------------------------------------------------------------------------
    # Fetch
    # -------------------------------------------------------------------------

    def store_candidates(self, candidates: Sequence[CandidateItem], result: FetchResult, dry_run: bool = False) -> None:
        seen: set[str] = set()
        for candidate in candidates:
            result.fetched += 1
            if candidate.url in seen or self.store.exists_by_url(candidate.url):
                result.duplicates += 1
                continue
            seen.add(candidate.url)

            if dry_run:
                result.new += 1
                continue

            item = self.store.build_item(
                title=candidate.title,
                url=candidate.url,
                published_at=candidate.published_at,
                body=candidate.raw_content,
                source=candidate.source,
            )
            try:
                inserted = self.store.upsert(item)
            except ConflictError as e:
                logger.error(f"Skipping candidate: {e}", extra={"event": "item_conflict", "url": candidate.url})
                result.conflicts += 1
                continue

            if inserted:
                result.new += 1
            else:
                result.duplicates += 1

    def fetch(self, max_items_per_feed: int | None = None, dry_run: bool = False) -> FetchResult:
        """Fetch every feed. A failing feed is logged and does not stop the others."""
        result = FetchResult()
        for feed in self.feeds:
            try:
                candidates = self.fetcher.fetch_candidates(feed, limit=max_items_per_feed)
            except Exception as e:
                logger.error(f"Feed {feed.name} failed: {e}", extra={"event": "feed_failed", "feed": feed.name})
                result.errors.append(f"{feed.name}: {e}")
                continue
            self.store_candidates(candidates, result, dry_run=dry_run)

        logger.info(
            f"Ingest: {result.new} new, {result.duplicates} duplicates, {result.conflicts} conflicts",
            extra={"event": "ingest_complete", "items_processed": result.fetched},
        )
        return result

    # -------------------------------------------------------------------------
    # Content (first ledger stage)
    # -------------------------------------------------------------------------

    def process_new_items(self, limit: int | None = None, dry_run: bool = False) -> ContentResult:
        """Backfill bodies for new items and advance them to the ingested stage."""
        result = ContentResult()
        items = self.ledger.items_eligible_for(Stage.INGESTED, limit)
        if dry_run:
            result.processed = len(items)
            return result

        for item in items:
            item_id = item.id
            detail = None
            if not is_substantial(item.body):
                body = self.extractor.extract_body(item.source_url)
                if body and self.store.update_body(item_id, body):
                    result.extracted += 1
                elif not is_substantial(item.body):
                    detail = TITLE_ONLY_DETAIL
                    result.title_only += 1

            self.ledger.record(item_id, Stage.INGESTED, Outcome.SUCCESS, error_detail=detail)
            result.processed += 1

        return result

    def backfill_bodies(self, limit: int = 20) -> int:
        """Retry extraction for stored items whose body is still short. Returns bodies filled."""
        filled = 0
        for item in self.store.find_needing_body(limit):
            body = self.extractor.extract_body(item.source_url)
            if body and self.store.update_body(item.id, body):
                filled += 1
        return filled
