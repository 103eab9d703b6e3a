# technews/services/summarizer.py
"""
Summarization adapter.

Wraps the text service with the retry policy and persists one Summary per
item. Text service calls run on a small thread pool; database writes stay
in the calling thread, in input order.

Any failure, transient after retries or permanent, is recorded as a
summarized/failed ledger event and never propagates past the batch loop.
"""

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from technews import models
from technews.llm.base import TextService, extract_json
from technews.llm.prompts import (
    SUMMARY_MAX_TOKENS,
    SUMMARY_SYSTEM_PROMPT,
    SUMMARY_TEMPERATURE,
    build_summary_prompt,
)
from technews.logging_config import ProgressTracker
from technews.models import Outcome, Stage
from technews.services.resilience import (
    DEFAULT_RETRY_POLICY,
    IntervalGate,
    PermanentServiceError,
    RetryPolicy,
    retry_call,
)
from technews.services.stage_ledger import StageLedger

logger = logging.getLogger(__name__)


class SummarizationError(PermanentServiceError):
    """The text service answered, but not with a usable summary."""

    pass


@dataclass
class SummaryResult:
    short: str
    detailed: str
    tokens_used: int = 0


@dataclass
class BatchSummaryResult:
    processed: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: int = 0  # success already recorded by an overlapping run
    total_tokens: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ItemSnapshot:
    """Plain copy of the fields a worker thread needs; ORM objects stay in the main thread."""

    id: str
    title: str
    body: str
    source: str
    published_at: datetime

    @classmethod
    def of(cls, item: models.Item) -> "ItemSnapshot":
        return cls(
            id=item.id,
            title=item.title,
            body=item.body or "",
            source=item.source,
            published_at=item.published_at,
        )


def parse_summary(text: str, tokens_used: int) -> SummaryResult:
    """Parse the JSON answer. Raises SummarizationError on empty or malformed output."""
    if not text or not text.strip():
        raise SummarizationError("Empty response from text service")
    try:
        data = extract_json(text)
    except ValueError as e:
        raise SummarizationError(f"Malformed summary response: {e}") from e

    short = data.get("shortSummary")
    if not isinstance(short, str) or not short.strip():
        raise SummarizationError("Summary response has no shortSummary")
    detailed = data.get("detailedSummary")
    if not isinstance(detailed, str) or not detailed.strip():
        detailed = short

    return SummaryResult(short=short.strip(), detailed=detailed.strip(), tokens_used=tokens_used)


class SummarizationAdapter:
    """Summarizes filtered items and records the summarized stage."""

    def __init__(
        self,
        db: Session,
        text_service: TextService,
        ledger: StageLedger | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        max_workers: int = 2,
        batch_delay_seconds: float = 1.0,
        gate: IntervalGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.text_service = text_service
        self.ledger = ledger or StageLedger(db)
        self.retry_policy = retry_policy
        self.max_workers = max(1, max_workers)
        self.batch_delay_seconds = batch_delay_seconds
        self.gate = gate or IntervalGate(0.0)
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # External call (thread-safe, no database access)
    # -------------------------------------------------------------------------

    def _complete(self, user_prompt: str):
        self.gate.acquire()
        return self.text_service.complete(
            SUMMARY_SYSTEM_PROMPT,
            user_prompt,
            max_tokens=SUMMARY_MAX_TOKENS,
            temperature=SUMMARY_TEMPERATURE,
            json_mode=True,
            call_type="summary",
        )

    def summarize(self, item) -> SummaryResult:
        """
        Summarize one item under the retry policy.

        Raises:
            TransientServiceError: retries exhausted
            PermanentServiceError: rejected call or unusable answer
        """
        user_prompt = build_summary_prompt(item.title, item.body, item.source, item.published_at)
        completion = retry_call(
            self._complete,
            user_prompt,
            policy=self.retry_policy,
            sleep=self._sleep,
        )
        return parse_summary(completion.text, completion.tokens_used)

    # -------------------------------------------------------------------------
    # Persistence (calling thread only)
    # -------------------------------------------------------------------------

    def save_result(self, item_id: str, result: SummaryResult) -> bool:
        """Upsert the Summary and record summarized/success in the same commit."""
        summary = self.db.get(models.Summary, item_id)
        if summary is None:
            summary = models.Summary(item_id=item_id)
            self.db.add(summary)
        summary.short_summary = result.short
        summary.detailed_summary = result.detailed
        summary.tokens_used = result.tokens_used
        summary.created_at = models.utc_now()
        return self.ledger.record(item_id, Stage.SUMMARIZED, Outcome.SUCCESS)

    def record_failure(self, item_id: str, error: Exception) -> None:
        detail = f"{type(error).__name__}: {error}"
        logger.warning(
            f"Summary failed for {item_id}: {detail}",
            extra={"event": "summary_failed", "item_id": item_id},
        )
        self.ledger.record(item_id, Stage.SUMMARIZED, Outcome.FAILED, error_detail=detail)

    def summarize_and_save(self, item: models.Item) -> SummaryResult | None:
        """Summarize one item and persist the outcome. Never raises for item-level failures."""
        snapshot = ItemSnapshot.of(item)
        try:
            result = self.summarize(snapshot)
        except Exception as e:
            self.record_failure(snapshot.id, e)
            return None
        self.save_result(snapshot.id, result)
        return result

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    def summarize_batch(self, items: Sequence[models.Item]) -> BatchSummaryResult:
        """
        Summarize a bounded list of items.

        Items are processed in chunks of max_workers concurrent calls with a
        fixed pause between chunks.
        """
        batch = BatchSummaryResult()
        snapshots = [ItemSnapshot.of(item) for item in items]
        if not snapshots:
            return batch

        tracker = ProgressTracker(total=len(snapshots), stage=Stage.SUMMARIZED.value, log_every=5)

        for start in range(0, len(snapshots), self.max_workers):
            if start > 0 and self.batch_delay_seconds > 0:
                self._sleep(self.batch_delay_seconds)

            chunk = snapshots[start : start + self.max_workers]
            outcomes: dict[str, SummaryResult | Exception] = {}

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {executor.submit(self.summarize, snap): snap.id for snap in chunk}
                for future in as_completed(futures):
                    item_id = futures[future]
                    try:
                        outcomes[item_id] = future.result()
                    except Exception as e:
                        outcomes[item_id] = e

            # Save results to database (sequential)
            for snap in chunk:
                outcome = outcomes[snap.id]
                batch.processed += 1
                if isinstance(outcome, Exception):
                    self.record_failure(snap.id, outcome)
                    batch.failed += 1
                    batch.errors.append(f"{snap.id}: {outcome}")
                    tracker.increment(success=False)
                    continue

                batch.total_tokens += outcome.tokens_used
                if self.save_result(snap.id, outcome):
                    batch.successful += 1
                else:
                    batch.duplicates += 1
                tracker.increment(success=True)

        tracker.finish()
        return batch
