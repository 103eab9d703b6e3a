# technews/services/feeds.py
"""
RSS feed source.

Downloads feeds with httpx (retried on network errors) and parses them
with feedparser into CandidateItem records. Entries without a title or a
link are dropped; entries without a date are stamped with the fetch time.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import UTC, datetime

import feedparser
import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from technews.models import FeedSource

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """A feed could not be downloaded or parsed."""

    pass


@dataclass(frozen=True)
class FeedConfig:
    name: str
    url: str
    source: FeedSource


DEFAULT_FEEDS: list[FeedConfig] = [
    FeedConfig(
        name="ABC Bourse - Actualités",
        url="https://www.abcbourse.com/rss/displaynewsrss",
        source=FeedSource.ABCBOURSE,
    ),
    FeedConfig(
        name="ABC Bourse - Analyses",
        url="https://www.abcbourse.com/rss/lastanalysisrss",
        source=FeedSource.ABCBOURSE,
    ),
]


@dataclass
class CandidateItem:
    """One feed entry, before it becomes an Item."""

    title: str
    url: str
    published_at: datetime
    source: FeedSource
    raw_content: str | None = None


def strip_html(text: str | None) -> str:
    if not text:
        return ""
    if "<" in text:
        text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def _entry_datetime(entry) -> datetime | None:
    """feedparser normalizes *_parsed fields to UTC struct_time."""
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=UTC)
            except (TypeError, ValueError):
                continue
    return None


def _entry_content(entry) -> str | None:
    if entry.get("content"):
        value = entry["content"][0].get("value", "")
        if value:
            return strip_html(value)
    summary = entry.get("summary") or entry.get("description")
    return strip_html(summary) or None


class RssFeedFetcher:
    """Fetch candidates from RSS/Atom feeds."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        user_agent: str = "Mozilla/5.0 (compatible; TechFinanceNews/0.1)",
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ):
        self.client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "application/rss+xml, application/xml, text/xml, */*",
            },
        )

    def close(self) -> None:
        self.client.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def _download(self, url: str) -> bytes:
        response = self.client.get(url)
        response.raise_for_status()
        return response.content

    def parse(self, content: bytes, feed: FeedConfig, limit: int | None = None) -> list[CandidateItem]:
        parsed = feedparser.parse(content)
        if getattr(parsed, "bozo", 0) and not parsed.entries:
            raise FeedError(f"{feed.name}: {getattr(parsed, 'bozo_exception', 'unparseable feed')}")

        entries = parsed.entries[:limit] if limit else parsed.entries
        fetched_at = datetime.now(UTC)
        candidates: list[CandidateItem] = []
        seen: set[str] = set()

        for entry in entries:
            title = strip_html(entry.get("title"))
            url = (entry.get("link") or "").strip()
            if not title or not url or url in seen:
                continue
            seen.add(url)
            candidates.append(
                CandidateItem(
                    title=title,
                    url=url,
                    published_at=_entry_datetime(entry) or fetched_at,
                    source=feed.source,
                    raw_content=_entry_content(entry),
                )
            )
        return candidates

    def fetch_candidates(self, feed: FeedConfig, limit: int | None = None) -> list[CandidateItem]:
        """
        Download and parse one feed.

        Raises:
            FeedError: download failed after retries or the feed is unparseable
        """
        start_time = time.time()
        try:
            content = self._download(feed.url)
        except httpx.HTTPError as e:
            raise FeedError(f"{feed.name}: {e}") from e

        candidates = self.parse(content, feed, limit)
        logger.info(
            f"Fetched {len(candidates)} entries from {feed.name} in {int((time.time() - start_time) * 1000)}ms",
            extra={"event": "feed_fetched", "feed": feed.name, "items_processed": len(candidates)},
        )
        return candidates
