# technews/destinations/__init__.py
"""
Publication destinations.

Usage:
    from technews.destinations import get_destination

    destination = get_destination()
    destination.ensure_schema(REQUIRED_FIELDS)
    page_id = destination.create_page(properties, blocks)
"""

from typing import Optional

from technews.config import get_settings
from technews.destinations.base import (
    BlockType,
    ContentBlock,
    DestinationService,
    PageProperty,
    PropertyType,
)
from technews.services.resilience import ConfigurationError

__all__ = [
    "BlockType",
    "ContentBlock",
    "DestinationService",
    "PageProperty",
    "PropertyType",
    "get_destination",
]


def get_destination(database_id: Optional[str] = None, **kwargs) -> DestinationService:
    """
    Build the configured destination.

    Args:
        database_id: Target database. Defaults to NOTION_DATABASE_ID.

    Raises:
        ConfigurationError: credentials are missing
    """
    settings = get_settings()
    if not settings.NOTION_API_KEY:
        raise ConfigurationError("NOTION_API_KEY is not set")

    from technews.destinations.notion import NotionDestination

    return NotionDestination(
        api_key=settings.NOTION_API_KEY,
        database_id=database_id or settings.NOTION_DATABASE_ID,
        **kwargs,
    )
