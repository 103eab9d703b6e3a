# technews/services/stage_ledger.py
"""
Append-only stage ledger.

Every stage attempt appends one StageEvent row. An item's position in the
pipeline is derived from these rows:

- eligible for the first stage: no active rows at all
- eligible for stage N > 0: a success at stage N-1 and no active row at N

Any failed/skipped row at a stage parks the item there. Only the
out-of-band requeue marks such rows as requeued, which makes the item
eligible again while keeping the rows for audit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import exists, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from technews import models
from technews.models import Outcome, Stage, StageEvent

logger = logging.getLogger(__name__)

# Ledger rows that still count for eligibility
_ACTIVE = StageEvent.requeued_at.is_(None)


@dataclass
class LedgerStats:
    """Ledger-derived counts for status reporting."""

    total_items: int = 0
    succeeded: dict[str, int] = field(default_factory=dict)
    failed: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    synced: int = 0
    last_event_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "synced": self.synced,
            "last_event_at": self.last_event_at.isoformat() if self.last_event_at else None,
        }


class StageLedger:
    """Append-only stage event log and the eligibility queries built on it."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def record(
        self,
        item_id: str,
        stage: Stage | str,
        outcome: Outcome | str,
        error_detail: str | None = None,
        score: float | None = None,
    ) -> bool:
        """
        Append one event and commit it.

        Returns:
            False when a second success for (item, stage) was rejected by the
            unique index, True otherwise.
        """
        stage = Stage(stage)
        outcome = Outcome(outcome)
        event = StageEvent(
            item_id=item_id,
            stage=stage.value,
            outcome=outcome.value,
            error_detail=error_detail[:2000] if error_detail else None,
            score=score,
            occurred_at=models.utc_now(),
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if outcome != Outcome.SUCCESS:
                raise
            logger.info(
                f"Duplicate {stage.value} success for {item_id} ignored",
                extra={"event": "ledger_duplicate_success", "item_id": item_id},
            )
            return False

        logger.debug(
            f"{item_id} {stage.value}={outcome.value}",
            extra={"event": "ledger_record", "item_id": item_id, "outcome": outcome.value},
        )
        return True

    def requeue(self, item_id: str, stage: Stage | str) -> int:
        """
        Make a parked item eligible again at `stage`.

        Stamps requeued_at on the item's active failed/skipped rows at that
        stage. Success rows are never touched. Returns the number of rows
        requeued.
        """
        stage = Stage(stage)
        rows = (
            self.db.query(StageEvent)
            .filter(
                StageEvent.item_id == item_id,
                StageEvent.stage == stage.value,
                StageEvent.outcome.in_([Outcome.FAILED.value, Outcome.SKIPPED.value]),
                _ACTIVE,
            )
            .all()
        )
        now = models.utc_now()
        for row in rows:
            row.requeued_at = now
        self.db.commit()

        if rows:
            logger.info(
                f"Requeued {item_id} at {stage.value} ({len(rows)} rows)",
                extra={"event": "ledger_requeue", "item_id": item_id},
            )
        return len(rows)

    def requeue_stage(self, stage: Stage | str, outcome: Outcome | str | None = None) -> int:
        """Requeue every parked item at `stage`. Optionally only failed or only skipped ones."""
        stage = Stage(stage)
        outcomes = [Outcome(outcome).value] if outcome else [Outcome.FAILED.value, Outcome.SKIPPED.value]
        item_ids = [
            row.item_id
            for row in self.db.query(StageEvent.item_id)
            .filter(StageEvent.stage == stage.value, StageEvent.outcome.in_(outcomes), _ACTIVE)
            .distinct()
            .all()
        ]
        return sum(self.requeue(item_id, stage) for item_id in item_ids)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def eligibility_query(self, stage: Stage | str):
        """Query of items eligible for `stage`, newest first."""
        stage = Stage(stage)
        prev = models.previous_stage(stage)

        query = self.db.query(models.Item)
        if prev is None:
            query = query.filter(~exists().where(StageEvent.item_id == models.Item.id, _ACTIVE))
        else:
            query = query.filter(
                exists().where(
                    StageEvent.item_id == models.Item.id,
                    StageEvent.stage == prev.value,
                    StageEvent.outcome == Outcome.SUCCESS.value,
                    _ACTIVE,
                ),
                ~exists().where(
                    StageEvent.item_id == models.Item.id,
                    StageEvent.stage == stage.value,
                    _ACTIVE,
                ),
            )
        return query.order_by(models.Item.published_at.desc(), models.Item.id)

    def items_eligible_for(self, stage: Stage | str, limit: int | None = None) -> list[models.Item]:
        query = self.eligibility_query(stage)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def count_eligible(self, stage: Stage | str) -> int:
        return self.eligibility_query(stage).order_by(None).count()

    def latest_outcome(self, item_id: str, stage: Stage | str) -> Outcome | None:
        """Outcome of the most recent active event for (item, stage)."""
        row = (
            self.db.query(StageEvent.outcome)
            .filter(StageEvent.item_id == item_id, StageEvent.stage == Stage(stage).value, _ACTIVE)
            .order_by(StageEvent.id.desc())
            .first()
        )
        return Outcome(row.outcome) if row else None

    def has_success(self, item_id: str, stage: Stage | str) -> bool:
        return self.latest_outcome(item_id, stage) == Outcome.SUCCESS

    def history(self, item_id: str) -> list[StageEvent]:
        """All events for an item in the order they were written, requeued ones included."""
        return self.db.query(StageEvent).filter(StageEvent.item_id == item_id).order_by(StageEvent.id).all()

    def parked_items(self, stage: Stage | str | None = None) -> list[tuple[models.Item, StageEvent]]:
        """
        Items parked by a failed/skipped event, with that event.

        One entry per (item, stage), carrying the latest parking event.
        """
        success = aliased(StageEvent)
        query = (
            self.db.query(models.Item, StageEvent)
            .join(StageEvent, StageEvent.item_id == models.Item.id)
            .filter(
                StageEvent.outcome.in_([Outcome.FAILED.value, Outcome.SKIPPED.value]),
                _ACTIVE,
                ~exists().where(
                    success.item_id == StageEvent.item_id,
                    success.stage == StageEvent.stage,
                    success.outcome == Outcome.SUCCESS.value,
                ),
            )
        )
        if stage is not None:
            query = query.filter(StageEvent.stage == Stage(stage).value)

        latest: dict[tuple[str, str], tuple[models.Item, StageEvent]] = {}
        for item, event in query.order_by(StageEvent.id).all():
            latest[(item.id, event.stage)] = (item, event)
        return list(latest.values())

    def stats(self) -> LedgerStats:
        stats = LedgerStats()
        stats.total_items = self.db.query(func.count(models.Item.id)).scalar() or 0

        rows = (
            self.db.query(StageEvent.stage, StageEvent.outcome, func.count(StageEvent.id))
            .filter(_ACTIVE)
            .group_by(StageEvent.stage, StageEvent.outcome)
            .all()
        )
        buckets = {
            Outcome.SUCCESS.value: stats.succeeded,
            Outcome.FAILED.value: stats.failed,
            Outcome.SKIPPED.value: stats.skipped,
        }
        for stage in models.STAGE_ORDER:
            for bucket in buckets.values():
                bucket[stage.value] = 0
        for stage_value, outcome_value, count in rows:
            buckets[outcome_value][stage_value] = count

        stats.synced = self.db.query(func.count(models.SyncRecord.item_id)).scalar() or 0
        stats.last_event_at = self.db.query(func.max(StageEvent.occurred_at)).scalar()
        return stats
