# technews/destinations/notion.py
"""
Notion destination over the public REST API.

Endpoints used:
- GET /v1/databases/{id}     read the schema, find the title property
- PATCH /v1/databases/{id}   add missing properties
- POST /v1/pages             create one page with its content blocks

Notion allows roughly 3 requests per second per integration; callers gate
requests with their own IntervalGate.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional

import httpx

from technews.destinations.base import (
    BlockType,
    ContentBlock,
    DestinationService,
    PageProperty,
    PropertyType,
)
from technews.services.resilience import (
    ConfigurationError,
    PermanentServiceError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)

logger = logging.getLogger(__name__)

# Notion rejects rich text objects longer than this
MAX_TEXT_LENGTH = 2000
# And more than this many children in one request
MAX_CHILDREN = 100


def _rich_text(text: str, url: Optional[str] = None) -> list[dict[str, Any]]:
    """Split text into <=2000 char rich text objects."""
    text = text or ""
    chunks = [text[i : i + MAX_TEXT_LENGTH] for i in range(0, len(text), MAX_TEXT_LENGTH)] or [""]
    objects = []
    for chunk in chunks:
        obj: dict[str, Any] = {"type": "text", "text": {"content": chunk}}
        if url:
            obj["text"]["link"] = {"url": url}
        objects.append(obj)
    return objects


def _date_value(value) -> Optional[dict]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return {"start": value.isoformat()}
    if isinstance(value, date):
        return {"start": value.isoformat()}
    return {"start": str(value)}


class NotionDestination(DestinationService):
    """Creates pages in a Notion database."""

    BASE_URL = "https://api.notion.com/v1"
    NOTION_VERSION = "2022-06-28"
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        api_key: str,
        database_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        if not api_key or not database_id:
            raise ConfigurationError("Notion requires NOTION_API_KEY and NOTION_DATABASE_ID")

        self.database_id = database_id
        self.client = client or httpx.Client(
            base_url=self.BASE_URL,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Notion-Version": self.NOTION_VERSION,
                "Content-Type": "application/json",
            },
        )
        # Title property name per database, discovered by ensure_schema
        self._title_properties: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "notion"

    def close(self) -> None:
        self.client.close()

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict:
        try:
            response = self.client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise ServiceTimeoutError(f"Notion timeout on {method} {path}: {e}") from e
        except httpx.TransportError as e:
            raise ServiceUnavailableError(f"Notion unreachable on {method} {path}: {e}") from e

        if response.status_code == 429:
            raise RateLimitError(f"Notion rate limit on {method} {path}")
        if response.status_code >= 500:
            raise ServiceUnavailableError(f"Notion error {response.status_code} on {method} {path}")
        if response.status_code >= 400:
            raise PermanentServiceError(
                f"Notion rejected {method} {path}: {response.status_code} {response.text[:300]}"
            )
        return response.json()

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def ensure_schema(self, required_fields: dict[str, PropertyType], database_id: Optional[str] = None) -> None:
        database_id = database_id or self.database_id
        data = self._request("GET", f"/databases/{database_id}")
        existing = data.get("properties", {})

        for prop_name, prop in existing.items():
            if prop.get("type") == "title":
                self._title_properties[database_id] = prop_name
                break

        missing = {
            name: {ptype.value: {}}
            for name, ptype in required_fields.items()
            if ptype != PropertyType.TITLE and name not in existing
        }
        if missing:
            logger.info(f"Adding Notion properties: {', '.join(missing)}")
            self._request("PATCH", f"/databases/{database_id}", json={"properties": missing})

    def title_property(self, database_id: Optional[str] = None) -> str:
        return self._title_properties.get(database_id or self.database_id, "Name")

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    def _property_payload(self, prop: PageProperty) -> dict:
        if prop.type == PropertyType.TITLE:
            return {"title": _rich_text(str(prop.value or ""))[:1]}
        if prop.type == PropertyType.SELECT:
            # Select option names cannot contain commas
            return {"select": {"name": str(prop.value).replace(",", " ")[:100]} if prop.value else None}
        if prop.type == PropertyType.DATE:
            return {"date": _date_value(prop.value)}
        if prop.type == PropertyType.URL:
            return {"url": prop.value or None}
        if prop.type == PropertyType.NUMBER:
            return {"number": prop.value}
        return {"rich_text": _rich_text(str(prop.value or ""))}

    def _block_payload(self, block: ContentBlock) -> dict:
        if block.type == BlockType.DIVIDER:
            return {"object": "block", "type": "divider", "divider": {}}
        if block.type == BlockType.CALLOUT:
            callout: dict[str, Any] = {"rich_text": _rich_text(block.text)}
            if block.icon:
                callout["icon"] = {"type": "emoji", "emoji": block.icon}
            return {"object": "block", "type": "callout", "callout": callout}
        if block.type == BlockType.HEADING:
            return {"object": "block", "type": "heading_2", "heading_2": {"rich_text": _rich_text(block.text)}}
        if block.type == BlockType.BULLET:
            return {
                "object": "block",
                "type": "bulleted_list_item",
                "bulleted_list_item": {"rich_text": _rich_text(block.text, block.url)},
            }
        if block.type == BlockType.LINK:
            return {
                "object": "block",
                "type": "paragraph",
                "paragraph": {"rich_text": _rich_text(block.text or block.url or "", block.url)},
            }
        return {"object": "block", "type": "paragraph", "paragraph": {"rich_text": _rich_text(block.text)}}

    def build_page_payload(
        self,
        properties: dict[str, PageProperty],
        content: list[ContentBlock],
        database_id: Optional[str] = None,
    ) -> dict:
        database_id = database_id or self.database_id
        notion_properties = {}
        for prop_name, prop in properties.items():
            key = self.title_property(database_id) if prop.type == PropertyType.TITLE else prop_name
            notion_properties[key] = self._property_payload(prop)

        children = [self._block_payload(block) for block in content]
        if len(children) > MAX_CHILDREN:
            logger.warning(f"Page content truncated from {len(children)} to {MAX_CHILDREN} blocks")
            children = children[:MAX_CHILDREN]

        return {
            "parent": {"database_id": database_id},
            "properties": notion_properties,
            "children": children,
        }

    def create_page(
        self,
        properties: dict[str, PageProperty],
        content: list[ContentBlock],
        database_id: Optional[str] = None,
    ) -> str:
        payload = self.build_page_payload(properties, content, database_id)
        data = self._request("POST", "/pages", json=payload)
        page_id = data.get("id")
        if not page_id:
            raise PermanentServiceError("Notion returned a page without id")
        return page_id
