# technews/services/item_store.py
"""
Persistent item store.

Items are keyed by a content-derived id: the first 16 hex chars of
sha256(normalized title + published timestamp). Re-ingesting the same
logical item (even with different title casing or spacing) yields the same
id, so the second upsert is a no-op.
"""

import hashlib
import logging
import re
from datetime import UTC, datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from technews import models

logger = logging.getLogger(__name__)

# Bodies at or below this length are treated as missing
SUBSTANTIAL_BODY_LENGTH = 100


class ConflictError(Exception):
    """A source URL is already stored under a different item id."""

    def __init__(self, url: str, existing_id: str, new_id: str):
        super().__init__(f"URL {url} already stored as {existing_id}, refusing {new_id}")
        self.url = url
        self.existing_id = existing_id
        self.new_id = new_id


def normalize_title(title: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    if not title:
        return ""
    return re.sub(r"\s+", " ", title).strip().lower()


def to_naive_utc(value: datetime) -> datetime:
    """Convert to UTC and drop tzinfo. Naive input is taken as UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)
    return value


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a trailing Z, e.g. 2024-03-01T08:30:00.000Z"""
    value = to_naive_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def compute_item_id(title: str, published_at: datetime) -> str:
    """Deterministic item id from (normalized title, published timestamp)."""
    key = normalize_title(title) + format_timestamp(published_at)
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def is_substantial(body: str | None) -> bool:
    return bool(body) and len(body) > SUBSTANTIAL_BODY_LENGTH


class ItemStore:
    """Read/write access to items. Every write is committed immediately."""

    def __init__(self, db: Session):
        self.db = db

    def build_item(
        self,
        title: str,
        url: str,
        published_at: datetime,
        body: str | None = None,
        source: models.FeedSource | str = models.FeedSource.OTHER,
    ) -> models.Item:
        """Create a transient Item with its derived id."""
        published_at = to_naive_utc(published_at)
        return models.Item(
            id=compute_item_id(title, published_at),
            title=title.strip(),
            source_url=url,
            body=body or "",
            published_at=published_at,
            source=models.FeedSource(source).value,
            ingested_at=models.utc_now(),
        )

    def upsert(self, item: models.Item) -> bool:
        """
        Insert `item` if its id is new.

        Returns:
            True if a row was inserted, False if the id already existed.

        Raises:
            ConflictError: the source URL belongs to a different id.
        """
        if not item.id:
            item.id = compute_item_id(item.title, item.published_at)

        by_url = self.db.query(models.Item).filter(models.Item.source_url == item.source_url).one_or_none()
        if by_url is not None and by_url.id != item.id:
            raise ConflictError(item.source_url, by_url.id, item.id)

        existing = by_url or self.db.get(models.Item, item.id)
        if existing is not None:
            # Duplicate: only fill in a missing body
            if is_substantial(item.body) and not is_substantial(existing.body):
                existing.body = item.body
                self.db.commit()
            return False

        self.db.add(item)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race against an overlapping run
            self.db.rollback()
            winner = self.db.get(models.Item, item.id)
            if winner is None:
                other = self.db.query(models.Item).filter(models.Item.source_url == item.source_url).one_or_none()
                raise ConflictError(item.source_url, other.id if other else "?", item.id)
            return False
        return True

    def exists_by_url(self, url: str) -> bool:
        return self.db.query(models.Item.id).filter(models.Item.source_url == url).first() is not None

    def find_by_id(self, item_id: str) -> models.Item | None:
        return self.db.get(models.Item, item_id)

    def update_body(self, item_id: str, text: str | None) -> bool:
        """
        Replace an empty/short body with extracted content.

        No-op when the stored body is already substantial or `text` is empty,
        so a failed re-extraction never overwrites good content.
        """
        if not text or not text.strip():
            return False
        item = self.find_by_id(item_id)
        if item is None or is_substantial(item.body):
            return False
        item.body = text.strip()
        self.db.commit()
        return True

    def find_needing_body(self, limit: int = 20) -> list[models.Item]:
        """Items with an empty or short body, newest first."""
        return (
            self.db.query(models.Item)
            .filter(func.length(func.coalesce(models.Item.body, "")) <= SUBSTANTIAL_BODY_LENGTH)
            .order_by(models.Item.published_at.desc())
            .limit(limit)
            .all()
        )

    def count(self) -> int:
        return self.db.query(func.count(models.Item.id)).scalar() or 0
