"""
Article body extraction with retries and a fallback extractor.

- Downloads the page once, retrying network errors (3 attempts: 1s, 2s, 4s)
- Tries trafilatura first, then readability-lxml on the same HTML
- Reports a categorized failure reason instead of raising
"""

import configparser
import logging
import re
import time
from dataclasses import dataclass
from enum import Enum

import trafilatura
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from technews.services.item_store import SUBSTANTIAL_BODY_LENGTH

logger = logging.getLogger(__name__)


class ExtractionFailureReason(str, Enum):
    """Categorized failure reasons for observability."""

    DOWNLOAD_FAILED = "download_failed"
    EXTRACTION_FAILED = "extraction_failed"
    UNKNOWN = "unknown"


@dataclass
class ExtractionResult:
    """Result of a body extraction attempt."""

    success: bool
    body: str | None = None
    char_count: int = 0
    failure_reason: ExtractionFailureReason | None = None
    duration_ms: int = 0
    extractor_used: str | None = None  # "trafilatura" or "readability"


class BodyExtractor:
    """Extract article body text from a URL."""

    MIN_BODY_LENGTH = SUBSTANTIAL_BODY_LENGTH + 1
    TIMEOUT_SECONDS = 15

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
        reraise=True,
    )
    def _fetch_with_retry(self, url: str) -> str | None:
        """Fetch URL content with retries on network errors."""
        config = configparser.ConfigParser()
        config.read_dict({"DEFAULT": {"DOWNLOAD_TIMEOUT": str(self.TIMEOUT_SECONDS)}})
        return trafilatura.fetch_url(url, config=config)

    def _try_trafilatura(self, html: str) -> str | None:
        try:
            text = trafilatura.extract(
                html,
                include_comments=False,
                include_tables=False,
                no_fallback=False,
            )
            if text and len(text) >= self.MIN_BODY_LENGTH:
                return text
        except Exception as e:
            logger.debug(f"trafilatura extraction failed: {e}")
        return None

    def _try_readability(self, html: str) -> str | None:
        """Fallback extractor using readability-lxml."""
        try:
            from readability import Document

            summary = Document(html).summary()
            # readability returns HTML, strip tags
            clean_text = re.sub(r"<[^>]+>", "", summary)
            clean_text = re.sub(r"\n\s*\n+", "\n\n", clean_text).strip()
            if clean_text and len(clean_text) >= self.MIN_BODY_LENGTH:
                return clean_text
        except Exception as e:
            logger.debug(f"readability fallback failed: {e}")
        return None

    def extract(self, url: str) -> ExtractionResult:
        start_time = time.time()

        def elapsed() -> int:
            return int((time.time() - start_time) * 1000)

        try:
            downloaded = self._fetch_with_retry(url)
        except Exception as e:
            logger.warning(f"Download failed for {url}: {e}", extra={"event": "extraction_failed", "url": url})
            return ExtractionResult(
                success=False,
                failure_reason=ExtractionFailureReason.DOWNLOAD_FAILED,
                duration_ms=elapsed(),
            )

        if not downloaded:
            return ExtractionResult(
                success=False,
                failure_reason=ExtractionFailureReason.DOWNLOAD_FAILED,
                duration_ms=elapsed(),
            )

        for extractor_fn, name in ((self._try_trafilatura, "trafilatura"), (self._try_readability, "readability")):
            text = extractor_fn(downloaded)
            if text:
                logger.debug(f"{name} extracted {len(text)} chars from {url}")
                return ExtractionResult(
                    success=True,
                    body=text,
                    char_count=len(text),
                    duration_ms=elapsed(),
                    extractor_used=name,
                )

        return ExtractionResult(
            success=False,
            failure_reason=ExtractionFailureReason.EXTRACTION_FAILED,
            duration_ms=elapsed(),
        )

    def extract_body(self, url: str) -> str | None:
        """Body text or None; never raises."""
        result = self.extract(url)
        return result.body if result.success else None
