# technews/models.py
"""
Database models for the news pipeline.

Tables:
- Item: every ingested news item, keyed by a content-derived id
- StageEvent: append-only ledger of stage outcomes per item
- Summary: short and detailed summary per item (latest write wins)
- SyncRecord: remote page created for an item (publication idempotency)
- DigestRecord: one aggregate digest per (period kind, period key)

An item's position in the pipeline is always derived from its StageEvent
rows; there is no mutable status column.
"""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from technews.database import Base


def utc_now() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(UTC).replace(tzinfo=None)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

class Stage(str, Enum):
    """Processing stages, in pipeline order."""
    INGESTED = "ingested"
    FILTERED = "filtered"
    SUMMARIZED = "summarized"
    PUBLISHED = "published"


# Strict total order of stages
STAGE_ORDER = [Stage.INGESTED, Stage.FILTERED, Stage.SUMMARIZED, Stage.PUBLISHED]


def previous_stage(stage: Stage) -> Stage | None:
    """Stage that must have succeeded before `stage`, or None for the first one."""
    idx = STAGE_ORDER.index(Stage(stage))
    return STAGE_ORDER[idx - 1] if idx > 0 else None


class Outcome(str, Enum):
    """Result of one stage attempt."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class FeedSource(str, Enum):
    """Origin feeds."""
    ABCBOURSE = "abcbourse"
    ZONEBOURSE = "zonebourse"
    OTHER = "other"


class PeriodKind(str, Enum):
    """Digest windows."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


# -----------------------------------------------------------------------------
# Item
# -----------------------------------------------------------------------------

class Item(Base):
    """One ingested news item. Body may be filled in after ingestion."""
    __tablename__ = "items"

    id = Column(String(16), primary_key=True)  # sha256(normalized title + timestamp)[:16]
    title = Column(Text, nullable=False)
    source_url = Column(Text, nullable=False, unique=True)
    body = Column(Text, nullable=False, default="")
    published_at = Column(DateTime, nullable=False)
    source = Column(String(32), nullable=False, default=FeedSource.OTHER.value)
    ingested_at = Column(DateTime, default=utc_now, nullable=False)

    # Relationships
    events = relationship("StageEvent", back_populates="item", order_by="StageEvent.id")
    summary = relationship("Summary", back_populates="item", uselist=False)
    sync_record = relationship("SyncRecord", back_populates="item", uselist=False)

    __table_args__ = (
        Index("ix_items_published_at", "published_at"),
        Index("ix_items_ingested_at", "ingested_at"),
    )

    def __repr__(self) -> str:
        return f"<Item {self.id} {self.title[:40]!r}>"


# -----------------------------------------------------------------------------
# StageEvent
# -----------------------------------------------------------------------------

class StageEvent(Base):
    """
    Append-only ledger row: one per (item, stage, attempt).

    At most one success per (item, stage), enforced by a partial unique index.
    requeued_at is set only by the out-of-band requeue command; requeued rows
    stay for audit but no longer count for eligibility.
    """
    __tablename__ = "stage_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String(16), ForeignKey("items.id"), nullable=False)
    stage = Column(String(16), nullable=False)
    outcome = Column(String(16), nullable=False)
    error_detail = Column(Text, nullable=True)
    score = Column(Float, nullable=True)  # relevance score, filter stage only
    occurred_at = Column(DateTime, default=utc_now, nullable=False)
    requeued_at = Column(DateTime, nullable=True)

    item = relationship("Item", back_populates="events")

    __table_args__ = (
        Index("ix_stage_events_item_stage", "item_id", "stage"),
        Index("ix_stage_events_stage_outcome", "stage", "outcome"),
        Index(
            "uq_stage_events_single_success",
            "item_id",
            "stage",
            unique=True,
            sqlite_where=text("outcome = 'success'"),
            postgresql_where=text("outcome = 'success'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<StageEvent {self.item_id} {self.stage}={self.outcome}>"


# -----------------------------------------------------------------------------
# Summary
# -----------------------------------------------------------------------------

class Summary(Base):
    """Summaries produced by the text service, one row per item."""
    __tablename__ = "summaries"

    item_id = Column(String(16), ForeignKey("items.id"), primary_key=True)
    short_summary = Column(Text, nullable=False)
    detailed_summary = Column(Text, nullable=True)
    tokens_used = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    item = relationship("Item", back_populates="summary")


# -----------------------------------------------------------------------------
# SyncRecord
# -----------------------------------------------------------------------------

class SyncRecord(Base):
    """Remote page created for an item. Its existence means 'already published'."""
    __tablename__ = "sync_records"

    item_id = Column(String(16), ForeignKey("items.id"), primary_key=True)
    remote_page_id = Column(String(64), nullable=False)
    synced_at = Column(DateTime, default=utc_now, nullable=False)

    item = relationship("Item", back_populates="sync_record")

    __table_args__ = (
        Index("ix_sync_records_synced_at", "synced_at"),
    )


# -----------------------------------------------------------------------------
# DigestRecord
# -----------------------------------------------------------------------------

class DigestRecord(Base):
    """
    One aggregate digest per (period_kind, period_key).

    period_key is YYYY-MM-DD for days, the ISO week Monday (YYYY-MM-DD) for
    weeks and YYYY-MM for months. The composite primary key is what makes
    digest generation idempotent across runs.
    """
    __tablename__ = "digest_records"

    period_kind = Column(String(8), primary_key=True)
    period_key = Column(String(10), primary_key=True)
    period_start = Column(DateTime, nullable=False)  # UTC, inclusive
    period_end = Column(DateTime, nullable=False)  # UTC, exclusive
    item_count = Column(Integer, default=0, nullable=False)
    narrative = Column(Text, nullable=False, default="")
    tokens_used = Column(Integer, default=0, nullable=False)
    remote_page_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<DigestRecord {self.period_kind}:{self.period_key} items={self.item_count}>"
