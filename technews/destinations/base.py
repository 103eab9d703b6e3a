# technews/destinations/base.py
"""
Destination interface for published pages.

Payloads are built from destination-neutral properties and content blocks;
each provider translates them to its own API format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Union


class PropertyType(str, Enum):
    """Property kinds a destination database must support."""
    TITLE = "title"
    SELECT = "select"
    DATE = "date"
    URL = "url"
    NUMBER = "number"
    TEXT = "rich_text"


class BlockType(str, Enum):
    """Content block kinds."""
    CALLOUT = "callout"
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    BULLET = "bullet"
    DIVIDER = "divider"
    LINK = "link"


@dataclass
class PageProperty:
    """One typed property value on a page."""
    type: PropertyType
    value: Union[str, float, date, datetime, None]


@dataclass
class ContentBlock:
    """One block of page content. `url` is used by LINK blocks and optional elsewhere."""
    type: BlockType
    text: str = ""
    url: Optional[str] = None
    icon: Optional[str] = None


class DestinationService(ABC):
    """Abstract base class for publication destinations."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the destination name (e.g., 'notion')."""
        pass

    @abstractmethod
    def ensure_schema(self, required_fields: dict[str, PropertyType], database_id: Optional[str] = None) -> None:
        """
        Make sure the target database has the required properties.

        Idempotent. Missing properties are created where the destination
        allows it.
        """
        pass

    @abstractmethod
    def create_page(
        self,
        properties: dict[str, PageProperty],
        content: list[ContentBlock],
        database_id: Optional[str] = None,
    ) -> str:
        """
        Create one page and return its remote id.

        Raises:
            TransientServiceError: rate limits, timeouts and server errors (retryable)
            PermanentServiceError: rejected payloads and other client errors
        """
        pass

    def close(self) -> None:
        """Release any connection held by the destination."""
        pass
