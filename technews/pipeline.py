# technews/pipeline.py
"""
Pipeline driver: one batch run.

Stages run strictly in order, each computing its eligible items once from
the ledger and committing its outcomes before the next stage reads:

    fetch -> ingested -> filtered -> summarized -> published -> digest

A stage that raises, or cannot run because its service is not configured,
is logged and counted in `errors`; later stages still run. Item-level
failures are recorded in the ledger by the stage itself and never reach
the driver.
"""

import logging
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from technews.config import Settings, get_settings
from technews.destinations.base import DestinationService
from technews.keywords import TECH_KEYWORDS
from technews.llm.base import TextService
from technews.logging_config import log_stage, run_id_var
from technews.models import Outcome, PeriodKind, Stage
from technews.services.digest import DigestAggregator
from technews.services.ingestion import IngestionService
from technews.services.publisher import PublicationAdapter
from technews.services.relevance_filter import FilterConfig, match_article
from technews.services.resilience import ConfigurationError, IntervalGate, RetryPolicy
from technews.services.stage_ledger import StageLedger
from technews.services.summarizer import SummarizationAdapter

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    max_items: int = 20  # per stage
    skip_ingest: bool = False
    skip_content: bool = False
    skip_filter: bool = False
    skip_summarize: bool = False
    skip_publish: bool = False
    skip_digest: bool = False
    dry_run: bool = False
    digest_kinds: Sequence[PeriodKind] = (PeriodKind.DAY, PeriodKind.WEEK, PeriodKind.MONTH)
    now: datetime | None = None  # digest clock, defaults to the current time


@dataclass
class StageResult:
    """Result from a single pipeline stage."""

    stage: str
    status: str  # 'completed', 'skipped', 'failed'
    duration_ms: int = 0
    metrics: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


@dataclass
class RunStats:
    """Run summary. Item failure details live in the ledger, not here."""

    run_id: str
    ingested: int = 0
    filtered: int = 0
    summarized: int = 0
    published: int = 0
    digests: int = 0
    errors: int = 0
    duration_ms: int = 0
    dry_run: bool = False
    stages: dict[str, StageResult] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "ingested": self.ingested,
            "filtered": self.filtered,
            "summarized": self.summarized,
            "published": self.published,
            "digests": self.digests,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
            "dry_run": self.dry_run,
            "stages": {name: {"status": r.status, **r.metrics} for name, r in self.stages.items()},
        }


class PipelineDriver:
    """Sequences the stages of one batch run."""

    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        ingestion: IngestionService | None = None,
        text_service: TextService | None = None,
        destination: DestinationService | None = None,
        digest_destination: DestinationService | None = None,
        keywords: Mapping[str, Sequence[str]] = TECH_KEYWORDS,
        filter_config: FilterConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.ledger = StageLedger(db)
        self.keywords = keywords
        self.filter_config = filter_config or FilterConfig(min_score=self.settings.FILTER_MIN_SCORE)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._sleep = sleep
        self._ingestion = ingestion
        self._text_service = text_service
        self._destination = destination
        self._digest_destination = digest_destination
        # (attribute, resource) pairs built here and closed after each run
        self._owned: list[tuple[str, Any]] = []

    # -------------------------------------------------------------------------
    # Collaborators (built lazily so a missing credential only skips its stage)
    # -------------------------------------------------------------------------

    @property
    def ingestion(self) -> IngestionService:
        if self._ingestion is None:
            from technews.services.feeds import RssFeedFetcher

            fetcher = RssFeedFetcher(
                user_agent=self.settings.USER_AGENT,
                timeout=self.settings.FEED_TIMEOUT_SECONDS,
            )
            self._ingestion = IngestionService(self.db, fetcher=fetcher, ledger=self.ledger)
            self._owned.append(("_ingestion", fetcher))
        return self._ingestion

    def text_service(self) -> TextService:
        """Raises ConfigurationError when no provider is configured."""
        if self._text_service is None:
            if not self.settings.text_service_configured:
                raise ConfigurationError(f"No API key for text provider '{self.settings.TEXT_PROVIDER}'")
            from technews.llm import get_text_service

            self._text_service = get_text_service()
        return self._text_service

    def destination(self) -> DestinationService:
        """Raises ConfigurationError when the destination is not configured."""
        if self._destination is None:
            if not self.settings.destination_configured:
                raise ConfigurationError("NOTION_API_KEY / NOTION_DATABASE_ID not set")
            from technews.destinations import get_destination

            self._destination = get_destination()
            self._owned.append(("_destination", self._destination))
        return self._destination

    def digest_destination(self) -> DestinationService | None:
        if self._digest_destination is None:
            if self._destination is not None:
                return self._destination
            if not self.settings.NOTION_API_KEY or not self.settings.digest_database_id:
                return None
            from technews.destinations import get_destination

            self._digest_destination = get_destination(self.settings.digest_database_id)
            self._owned.append(("_digest_destination", self._digest_destination))
        return self._digest_destination

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _stage_fetch(self, options: RunOptions, stats: RunStats) -> StageResult:
        result = self.ingestion.fetch(max_items_per_feed=options.max_items, dry_run=options.dry_run)
        stats.ingested = result.new
        return StageResult(
            stage="fetch",
            status="failed" if result.errors and not result.fetched else "completed",
            metrics={
                "fetched": result.fetched,
                "new": result.new,
                "duplicates": result.duplicates,
                "conflicts": result.conflicts,
            },
            errors=result.errors,
        )

    def _stage_content(self, options: RunOptions, stats: RunStats) -> StageResult:
        result = self.ingestion.process_new_items(limit=options.max_items, dry_run=options.dry_run)
        return StageResult(
            stage=Stage.INGESTED.value,
            status="completed",
            metrics={
                "processed": result.processed,
                "extracted": result.extracted,
                "title_only": result.title_only,
            },
        )

    def _stage_filter(self, options: RunOptions, stats: RunStats) -> StageResult:
        items = self.ledger.items_eligible_for(Stage.FILTERED, options.max_items)
        matched = rejected = 0
        for item in items:
            item_id = item.id
            result = match_article(item.title, item.body, self.keywords, self.filter_config)
            if result.matched:
                matched += 1
            else:
                rejected += 1
            if options.dry_run:
                continue
            self.ledger.record(
                item_id,
                Stage.FILTERED,
                Outcome.SUCCESS if result.matched else Outcome.SKIPPED,
                error_detail=result.describe(),
                score=result.score,
            )
        stats.filtered = matched
        return StageResult(
            stage=Stage.FILTERED.value,
            status="completed",
            metrics={"eligible": len(items), "matched": matched, "rejected": rejected},
        )

    def _stage_summarize(self, options: RunOptions, stats: RunStats) -> StageResult:
        if options.dry_run:
            eligible = self.ledger.count_eligible(Stage.SUMMARIZED)
            return StageResult(stage=Stage.SUMMARIZED.value, status="dry_run", metrics={"eligible": eligible})

        adapter = SummarizationAdapter(
            self.db,
            self.text_service(),
            ledger=self.ledger,
            retry_policy=self.retry_policy,
            max_workers=self.settings.SUMMARY_MAX_WORKERS,
            batch_delay_seconds=self.settings.SUMMARY_BATCH_DELAY_SECONDS,
            sleep=self._sleep,
        )
        items = self.ledger.items_eligible_for(Stage.SUMMARIZED, options.max_items)
        result = adapter.summarize_batch(items)
        stats.summarized = result.successful
        return StageResult(
            stage=Stage.SUMMARIZED.value,
            status="completed",
            metrics={
                "eligible": len(items),
                "successful": result.successful,
                "failed": result.failed,
                "duplicates": result.duplicates,
                "tokens": result.total_tokens,
            },
        )

    def _stage_publish(self, options: RunOptions, stats: RunStats) -> StageResult:
        if options.dry_run:
            eligible = self.ledger.count_eligible(Stage.PUBLISHED)
            return StageResult(stage=Stage.PUBLISHED.value, status="dry_run", metrics={"eligible": eligible})

        adapter = PublicationAdapter(
            self.db,
            self.destination(),
            ledger=self.ledger,
            retry_policy=self.retry_policy,
            gate=IntervalGate.per_second(self.settings.PUBLISH_REQUESTS_PER_SECOND, sleep=self._sleep),
            sleep=self._sleep,
        )
        items = self.ledger.items_eligible_for(Stage.PUBLISHED, options.max_items)
        result = adapter.publish_batch(items)
        stats.published = result.successful
        return StageResult(
            stage=Stage.PUBLISHED.value,
            status="completed",
            metrics={
                "eligible": len(items),
                "successful": result.successful,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )

    def _stage_digest(self, options: RunOptions, stats: RunStats) -> StageResult:
        try:
            text_service = self.text_service()
        except ConfigurationError as e:
            logger.warning(f"Digests will use the fallback narrative: {e}")
            text_service = None

        aggregator = DigestAggregator(
            self.db,
            text_service=text_service,
            destination=None if options.dry_run else self.digest_destination(),
            destination_database_id=self.settings.digest_database_id,
            timezone=self.settings.DIGEST_TIMEZONE,
            max_context_items=self.settings.DIGEST_MAX_CONTEXT_ITEMS,
            retry_policy=self.retry_policy,
            gate=IntervalGate.per_second(self.settings.PUBLISH_REQUESTS_PER_SECOND, sleep=self._sleep),
            sleep=self._sleep,
        )
        outcomes = aggregator.run_all(options.digest_kinds, now=options.now, dry_run=options.dry_run)
        stats.digests = sum(1 for o in outcomes if o.created)
        errors = [f"{o.kind.value}: {o.error}" for o in outcomes if o.status == "error"]
        return StageResult(
            stage="digest",
            status="failed" if errors else "completed",
            metrics={o.kind.value: f"{o.status}:{o.key}" for o in outcomes},
            errors=errors,
        )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def _run_stage(
        self,
        name: str,
        func: Callable[[RunOptions, RunStats], StageResult],
        options: RunOptions,
        stats: RunStats,
    ) -> None:
        started = time.time()
        try:
            with log_stage(name, stats.run_id):
                result = func(options, stats)
        except ConfigurationError as e:
            logger.warning(f"Stage {name} skipped: {e}", extra={"event": "stage_skipped"})
            result = StageResult(stage=name, status="skipped", errors=[str(e)])
        except Exception as e:
            self.db.rollback()
            result = StageResult(stage=name, status="failed", errors=[str(e)])

        result.duration_ms = int((time.time() - started) * 1000)
        stats.stages[name] = result
        if result.status in ("failed", "skipped"):
            stats.errors += max(1, len(result.errors))
        else:
            stats.errors += len(result.errors)

    def close(self) -> None:
        """Close the HTTP clients built by this driver. Injected collaborators are left open."""
        while self._owned:
            attr, resource = self._owned.pop()
            resource.close()
            setattr(self, attr, None)

    def run(self, options: RunOptions | None = None) -> RunStats:
        options = options or RunOptions()
        stats = RunStats(run_id=uuid.uuid4().hex[:12], dry_run=options.dry_run)
        run_id_var.set(stats.run_id)
        started = time.time()

        logger.info(
            f"Run {stats.run_id} started (max_items={options.max_items}, dry_run={options.dry_run})",
            extra={"event": "run_start"},
        )

        stages: list[tuple[str, bool, Callable[[RunOptions, RunStats], StageResult]]] = [
            ("fetch", options.skip_ingest, self._stage_fetch),
            (Stage.INGESTED.value, options.skip_content, self._stage_content),
            (Stage.FILTERED.value, options.skip_filter, self._stage_filter),
            (Stage.SUMMARIZED.value, options.skip_summarize, self._stage_summarize),
            (Stage.PUBLISHED.value, options.skip_publish, self._stage_publish),
            ("digest", options.skip_digest, self._stage_digest),
        ]
        try:
            for name, skipped, func in stages:
                if skipped:
                    logger.info(f"Stage {name} skipped by option")
                    continue
                self._run_stage(name, func, options, stats)
        finally:
            self.close()

        stats.duration_ms = int((time.time() - started) * 1000)
        logger.info(
            f"Run {stats.run_id} finished: ingested={stats.ingested} filtered={stats.filtered} "
            f"summarized={stats.summarized} published={stats.published} digests={stats.digests} "
            f"errors={stats.errors} ({stats.duration_ms}ms)",
            extra={"event": "run_complete", "duration_ms": stats.duration_ms},
        )
        run_id_var.set(None)
        return stats
