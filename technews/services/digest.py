# technews/services/digest.py
"""
Digest aggregator.

For each period kind (day, week, month) the aggregator:
1. resolves the period to digest and its canonical key
2. returns early if a DigestRecord already exists for (kind, key)
3. loads items whose SyncRecord.synced_at falls in the period, with summaries
4. asks the text service for one narrative over the first N items,
   falling back to a templated sentence if that fails
5. persists the DigestRecord
6. publishes the digest page, best-effort, and stores the page id

Calendar rules, evaluated in the configured timezone:
- day: the current local day, key YYYY-MM-DD
- week: the previous full ISO week, key = its Monday as YYYY-MM-DD
- month: the previous calendar month, key YYYY-MM

A period with no published items writes a zero-count record only once the
period has closed. The current day never gets an empty record, so items
published later that day still produce its digest.
"""

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from datetime import time as dt_time
from zoneinfo import ZoneInfo

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
from technews.llm.base import TextService
from technews.llm.prompts import DIGEST_MAX_TOKENS, DIGEST_TEMPERATURE, build_digest_prompts
from technews.models import PeriodKind
from technews.services.publisher import REQUIRED_FIELDS
from technews.services.resilience import (
    DEFAULT_RETRY_POLICY,
    IntervalGate,
    RetryPolicy,
    retry_call,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/Paris"
DEFAULT_MAX_CONTEXT_ITEMS = 100
# Items listed on a digest page
MAX_PAGE_ITEMS = 50

FALLBACK_NARRATIVE = "{count} items processed, no narrative available."

# Digest databases also carry the item count and the period key
DIGEST_FIELDS: dict[str, PropertyType] = {
    **REQUIRED_FIELDS,
    "Articles": PropertyType.NUMBER,
    "Period": PropertyType.TEXT,
}

_PAGE_TITLES = {
    PeriodKind.DAY: "Briefing du {key}",
    PeriodKind.WEEK: "Digest hebdomadaire - semaine du {key}",
    PeriodKind.MONTH: "Digest mensuel - {key}",
}


# -----------------------------------------------------------------------------
# Periods
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Period:
    """A digest window. start/end are naive UTC, end exclusive."""

    kind: PeriodKind
    key: str
    start: datetime
    end: datetime

    def is_closed(self, now: datetime) -> bool:
        return _as_naive_utc(now) >= self.end


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def _local_midnight_utc(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, dt_time.min, tzinfo=tz).astimezone(UTC).replace(tzinfo=None)


def _shift_month(first_of_month: date, months: int) -> date:
    index = first_of_month.year * 12 + (first_of_month.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _period_from_start(kind: PeriodKind, start: date, tz: ZoneInfo) -> Period:
    if kind == PeriodKind.DAY:
        end, key = start + timedelta(days=1), start.isoformat()
    elif kind == PeriodKind.WEEK:
        end, key = start + timedelta(days=7), start.isoformat()
    else:
        end, key = _shift_month(start, 1), start.strftime("%Y-%m")
    return Period(kind, key, _local_midnight_utc(start, tz), _local_midnight_utc(end, tz))


def period_for(kind: PeriodKind | str, now: datetime | None = None, tz: str | ZoneInfo = DEFAULT_TIMEZONE) -> Period:
    """The period a run at `now` should digest. Naive `now` is taken as UTC."""
    kind = PeriodKind(kind)
    tz = ZoneInfo(tz) if isinstance(tz, str) else tz
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    today = now.astimezone(tz).date()

    if kind == PeriodKind.DAY:
        start = today
    elif kind == PeriodKind.WEEK:
        this_monday = today - timedelta(days=today.weekday())
        start = this_monday - timedelta(days=7)
    else:
        start = _shift_month(today.replace(day=1), -1)
    return _period_from_start(kind, start, tz)


def period_from_key(kind: PeriodKind | str, key: str, tz: str | ZoneInfo = DEFAULT_TIMEZONE) -> Period:
    """
    Parse an explicit period key.

    Raises:
        ValueError: malformed key, or a week key that is not a Monday
    """
    kind = PeriodKind(kind)
    tz = ZoneInfo(tz) if isinstance(tz, str) else tz

    if kind == PeriodKind.MONTH:
        start = datetime.strptime(key, "%Y-%m").date()
    else:
        start = date.fromisoformat(key)
        if kind == PeriodKind.WEEK and start.weekday() != 0:
            raise ValueError(f"Week key {key} is not a Monday")
    return _period_from_start(kind, start, tz)


# -----------------------------------------------------------------------------
# Aggregator
# -----------------------------------------------------------------------------


@dataclass
class DigestEntry:
    title: str
    short_summary: str
    url: str
    source: str


@dataclass
class DigestOutcome:
    kind: PeriodKind
    key: str
    status: str  # created | exists | empty | empty_recorded | error
    item_count: int = 0
    tokens_used: int = 0
    page_id: str | None = None
    error: str | None = None

    @property
    def created(self) -> bool:
        return self.status in ("created", "empty_recorded")


def build_context(entries: list[DigestEntry], limit: int) -> str:
    return "\n\n".join(
        f"{i}. {entry.title}\n   {entry.short_summary}" for i, entry in enumerate(entries[:limit], start=1)
    )


class DigestAggregator:
    """Builds one digest per period key."""

    def __init__(
        self,
        db: Session,
        text_service: TextService | None = None,
        destination: DestinationService | None = None,
        destination_database_id: str | None = None,
        timezone: str = DEFAULT_TIMEZONE,
        max_context_items: int = DEFAULT_MAX_CONTEXT_ITEMS,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        gate: IntervalGate | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.text_service = text_service
        self.destination = destination
        self.destination_database_id = destination_database_id
        self.tz = ZoneInfo(timezone)
        self.max_context_items = max_context_items
        self.retry_policy = retry_policy
        self.gate = gate or IntervalGate.per_second(3)
        self._sleep = sleep
        self._schema_checked = False

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def find_record(self, kind: PeriodKind | str, key: str) -> models.DigestRecord | None:
        return self.db.get(models.DigestRecord, (PeriodKind(kind).value, key))

    def entries_for(self, period: Period) -> list[DigestEntry]:
        """Items synced within the period, joined to their summaries, newest first."""
        rows = (
            self.db.query(models.Item, models.Summary)
            .join(models.SyncRecord, models.SyncRecord.item_id == models.Item.id)
            .join(models.Summary, models.Summary.item_id == models.Item.id)
            .filter(
                models.SyncRecord.synced_at >= period.start,
                models.SyncRecord.synced_at < period.end,
            )
            .order_by(models.Item.published_at.desc(), models.Item.id)
            .all()
        )
        return [
            DigestEntry(
                title=item.title,
                short_summary=summary.short_summary,
                url=item.source_url,
                source=item.source,
            )
            for item, summary in rows
        ]

    def recent(self, kind: PeriodKind | str | None = None, limit: int = 30) -> list[models.DigestRecord]:
        query = self.db.query(models.DigestRecord)
        if kind is not None:
            query = query.filter(models.DigestRecord.period_kind == PeriodKind(kind).value)
        return query.order_by(models.DigestRecord.period_key.desc()).limit(limit).all()

    # -------------------------------------------------------------------------
    # Narrative
    # -------------------------------------------------------------------------

    def _complete(self, system_prompt: str, user_prompt: str, max_tokens: int):
        self.gate.acquire()
        return self.text_service.complete(
            system_prompt,
            user_prompt,
            max_tokens=max_tokens,
            temperature=DIGEST_TEMPERATURE,
            call_type="digest",
        )

    def generate_narrative(self, kind: PeriodKind, entries: list[DigestEntry]) -> tuple[str, int]:
        """Narrative text and tokens used. Falls back to a template on any failure."""
        fallback = FALLBACK_NARRATIVE.format(count=len(entries))
        if self.text_service is None:
            return fallback, 0

        context = build_context(entries, self.max_context_items)
        system_prompt, user_prompt = build_digest_prompts(kind.value, len(entries), context)
        try:
            completion = retry_call(
                self._complete,
                system_prompt,
                user_prompt,
                DIGEST_MAX_TOKENS[kind.value],
                policy=self.retry_policy,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.warning(f"Digest narrative failed, using fallback: {e}", extra={"event": "digest_fallback"})
            return fallback, 0

        text = (completion.text or "").strip()
        if not text:
            return fallback, completion.tokens_used
        return text, completion.tokens_used

    # -------------------------------------------------------------------------
    # Publication
    # -------------------------------------------------------------------------

    def build_page(self, record: models.DigestRecord, entries: list[DigestEntry]):
        kind = PeriodKind(record.period_kind)
        start_local = record.period_start.replace(tzinfo=UTC).astimezone(self.tz).date()
        properties = {
            "title": PageProperty(PropertyType.TITLE, _PAGE_TITLES[kind].format(key=record.period_key)),
            "Source": PageProperty(PropertyType.SELECT, f"digest-{kind.value}"),
            "Published Date": PageProperty(PropertyType.DATE, start_local),
            "Processed Date": PageProperty(PropertyType.DATE, models.utc_now().date()),
            "Articles": PageProperty(PropertyType.NUMBER, record.item_count),
            "Period": PageProperty(PropertyType.TEXT, f"{kind.value}:{record.period_key}"),
        }

        blocks = [
            ContentBlock(BlockType.CALLOUT, f"{record.item_count} articles tech/finance ({record.period_key})", icon="📊"),
            ContentBlock(BlockType.HEADING, "Points clés"),
        ]
        for line in record.narrative.split("\n"):
            if line.strip():
                blocks.append(ContentBlock(BlockType.PARAGRAPH, line.strip()))
        blocks.append(ContentBlock(BlockType.DIVIDER))
        blocks.append(ContentBlock(BlockType.HEADING, f"Articles ({record.item_count})"))
        for entry in entries[:MAX_PAGE_ITEMS]:
            blocks.append(ContentBlock(BlockType.BULLET, f"{entry.title} ({entry.source})", url=entry.url))
        if len(entries) > MAX_PAGE_ITEMS:
            blocks.append(ContentBlock(BlockType.PARAGRAPH, f"... et {len(entries) - MAX_PAGE_ITEMS} autres articles"))
        return properties, blocks

    def _gated(self, func: Callable, *args, **kwargs):
        self.gate.acquire()
        return func(*args, **kwargs)

    def publish_record(self, record: models.DigestRecord, entries: list[DigestEntry]) -> str | None:
        """Best-effort page creation. Returns the page id or None."""
        if self.destination is None:
            return None
        try:
            if not self._schema_checked:
                retry_call(
                    self._gated,
                    self.destination.ensure_schema,
                    DIGEST_FIELDS,
                    self.destination_database_id,
                    policy=self.retry_policy,
                    sleep=self._sleep,
                )
                self._schema_checked = True

            properties, blocks = self.build_page(record, entries)
            page_id = retry_call(
                self._gated,
                self.destination.create_page,
                properties,
                blocks,
                self.destination_database_id,
                policy=self.retry_policy,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.warning(
                f"Digest {record.period_kind}:{record.period_key} not published: {e}",
                extra={"event": "digest_publish_failed", "period_key": record.period_key},
            )
            return None

        record.remote_page_id = page_id
        self.db.commit()
        return page_id

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def _insert(self, record: models.DigestRecord) -> bool:
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return False
        return True

    def run(
        self,
        kind: PeriodKind | str,
        key: str | None = None,
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> DigestOutcome:
        """Build the digest for one period. Idempotent per (kind, key)."""
        kind = PeriodKind(kind)
        now = now or datetime.now(UTC)
        period = period_from_key(kind, key, self.tz) if key else period_for(kind, now, self.tz)
        log_extra = {"period_kind": kind.value, "period_key": period.key}

        if self.find_record(kind, period.key) is not None:
            logger.info(f"Digest {kind.value}:{period.key} already exists", extra={"event": "digest_exists", **log_extra})
            return DigestOutcome(kind, period.key, "exists")

        entries = self.entries_for(period)
        if dry_run:
            return DigestOutcome(kind, period.key, "dry_run", item_count=len(entries))

        if not entries:
            if not period.is_closed(now):
                logger.info(f"No items yet for {kind.value}:{period.key}", extra={"event": "digest_empty", **log_extra})
                return DigestOutcome(kind, period.key, "empty")
            record = models.DigestRecord(
                period_kind=kind.value,
                period_key=period.key,
                period_start=period.start,
                period_end=period.end,
                item_count=0,
                narrative=FALLBACK_NARRATIVE.format(count=0),
                created_at=models.utc_now(),
            )
            if not self._insert(record):
                return DigestOutcome(kind, period.key, "exists")
            logger.info(f"Recorded empty digest {kind.value}:{period.key}", extra={"event": "digest_empty", **log_extra})
            return DigestOutcome(kind, period.key, "empty_recorded")

        narrative, tokens = self.generate_narrative(kind, entries)
        record = models.DigestRecord(
            period_kind=kind.value,
            period_key=period.key,
            period_start=period.start,
            period_end=period.end,
            item_count=len(entries),
            narrative=narrative,
            tokens_used=tokens,
            created_at=models.utc_now(),
        )
        # Persist before publishing so a publication failure never regenerates the digest
        if not self._insert(record):
            return DigestOutcome(kind, period.key, "exists")

        page_id = self.publish_record(record, entries)
        logger.info(
            f"Digest {kind.value}:{period.key} created with {len(entries)} items",
            extra={"event": "digest_created", **log_extra},
        )
        return DigestOutcome(kind, period.key, "created", item_count=len(entries), tokens_used=tokens, page_id=page_id)

    def run_all(
        self,
        kinds: Iterable[PeriodKind | str] = tuple(PeriodKind),
        now: datetime | None = None,
        dry_run: bool = False,
    ) -> list[DigestOutcome]:
        """Run each kind independently; one kind failing never stops the others."""
        outcomes = []
        for kind in kinds:
            kind = PeriodKind(kind)
            try:
                outcomes.append(self.run(kind, now=now, dry_run=dry_run))
            except Exception as e:
                self.db.rollback()
                logger.error(f"Digest {kind.value} failed: {e}", exc_info=True)
                outcomes.append(DigestOutcome(kind, "", "error", error=str(e)))
        return outcomes
