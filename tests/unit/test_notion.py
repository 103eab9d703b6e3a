"""
Unit tests for the Notion destination.

Requests go to an httpx.MockTransport that records them.
"""

import json
from datetime import date

import httpx
import pytest

from technews.destinations.base import BlockType, ContentBlock, PageProperty, PropertyType
from technews.destinations.notion import MAX_CHILDREN, NotionDestination
from technews.services.publisher import REQUIRED_FIELDS
from technews.services.resilience import (
    ConfigurationError,
    PermanentServiceError,
    RateLimitError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)


class FakeNotion:
    """Minimal Notion API: one database, pages appended to a list."""

    def __init__(self, properties=None):
        self.properties = properties if properties is not None else {"Titre": {"type": "title"}}
        self.requests = []
        self.pages = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        if request.method == "GET" and request.url.path.startswith("/v1/databases/"):
            return httpx.Response(200, json={"properties": self.properties})
        if request.method == "PATCH":
            self.properties.update(body["properties"])
            return httpx.Response(200, json={"properties": self.properties})
        if request.method == "POST" and request.url.path == "/v1/pages":
            self.pages.append(body)
            return httpx.Response(200, json={"id": f"page-{len(self.pages)}"})
        return httpx.Response(404, json={"message": "not found"})


def _destination(handler, database_id="db-1"):
    client = httpx.Client(base_url=NotionDestination.BASE_URL, transport=httpx.MockTransport(handler))
    return NotionDestination(api_key="secret", database_id=database_id, client=client)


class TestEnsureSchema:
    def test_adds_missing_properties_and_finds_title(self):
        notion = FakeNotion()
        destination = _destination(notion)

        destination.ensure_schema(REQUIRED_FIELDS)

        methods = [(method, path) for method, path, _ in notion.requests]
        assert methods == [("GET", "/v1/databases/db-1"), ("PATCH", "/v1/databases/db-1")]
        patched = notion.requests[1][2]["properties"]
        assert patched == {
            "Source": {"select": {}},
            "Published Date": {"date": {}},
            "Processed Date": {"date": {}},
            "URL": {"url": {}},
        }
        assert destination.title_property() == "Titre"

    def test_complete_schema_not_patched(self):
        notion = FakeNotion(
            {
                "Name": {"type": "title"},
                "Source": {"type": "select"},
                "Published Date": {"type": "date"},
                "Processed Date": {"type": "date"},
                "URL": {"type": "url"},
            }
        )
        destination = _destination(notion)

        destination.ensure_schema(REQUIRED_FIELDS)

        assert [method for method, _, _ in notion.requests] == ["GET"]

    def test_other_database(self):
        notion = FakeNotion()
        destination = _destination(notion)

        destination.ensure_schema({"URL": PropertyType.URL}, database_id="db-digest")

        assert notion.requests[0][1] == "/v1/databases/db-digest"
        assert destination.title_property("db-digest") == "Titre"
        assert destination.title_property() == "Name"


class TestCreatePage:
    def test_payload(self):
        notion = FakeNotion()
        destination = _destination(notion)
        destination.ensure_schema(REQUIRED_FIELDS)

        page_id = destination.create_page(
            {
                "title": PageProperty(PropertyType.TITLE, "NVIDIA unveils new AI chip"),
                "Source": PageProperty(PropertyType.SELECT, "abcbourse"),
                "Published Date": PageProperty(PropertyType.DATE, date(2025, 1, 8)),
                "URL": PageProperty(PropertyType.URL, "https://example.com/a"),
            },
            [
                ContentBlock(BlockType.CALLOUT, "Court.", icon="💡"),
                ContentBlock(BlockType.DIVIDER),
                ContentBlock(BlockType.HEADING, "Résumé détaillé"),
                ContentBlock(BlockType.PARAGRAPH, "Texte."),
                ContentBlock(BlockType.LINK, "Lire l'article original", url="https://example.com/a"),
            ],
        )

        assert page_id == "page-1"
        payload = notion.pages[0]
        assert payload["parent"] == {"database_id": "db-1"}
        props = payload["properties"]
        assert props["Titre"]["title"][0]["text"]["content"] == "NVIDIA unveils new AI chip"
        assert props["Source"] == {"select": {"name": "abcbourse"}}
        assert props["Published Date"] == {"date": {"start": "2025-01-08"}}
        assert props["URL"] == {"url": "https://example.com/a"}
        types = [block["type"] for block in payload["children"]]
        assert types == ["callout", "divider", "heading_2", "paragraph", "paragraph"]
        assert payload["children"][0]["callout"]["icon"] == {"type": "emoji", "emoji": "💡"}
        link = payload["children"][4]["paragraph"]["rich_text"][0]["text"]
        assert link["link"] == {"url": "https://example.com/a"}

    def test_long_text_split(self):
        notion = FakeNotion()
        destination = _destination(notion)

        destination.create_page(
            {"title": PageProperty(PropertyType.TITLE, "T")},
            [ContentBlock(BlockType.PARAGRAPH, "x" * 4500)],
        )

        rich_text = notion.pages[0]["children"][0]["paragraph"]["rich_text"]
        assert [len(part["text"]["content"]) for part in rich_text] == [2000, 2000, 500]

    def test_children_truncated(self):
        notion = FakeNotion()
        destination = _destination(notion)

        destination.create_page(
            {"title": PageProperty(PropertyType.TITLE, "T")},
            [ContentBlock(BlockType.BULLET, f"item {i}") for i in range(150)],
        )

        assert len(notion.pages[0]["children"]) == MAX_CHILDREN

    def test_number_and_text_properties(self):
        notion = FakeNotion()
        destination = _destination(notion)
        destination.ensure_schema({"Articles": PropertyType.NUMBER, "Period": PropertyType.TEXT})

        destination.create_page(
            {
                "title": PageProperty(PropertyType.TITLE, "Digest"),
                "Articles": PageProperty(PropertyType.NUMBER, 12),
                "Period": PageProperty(PropertyType.TEXT, "week:2025-01-06"),
            },
            [],
        )

        assert notion.requests[1][2]["properties"] == {"Articles": {"number": {}}, "Period": {"rich_text": {}}}
        props = notion.pages[0]["properties"]
        assert props["Articles"] == {"number": 12}
        assert props["Period"]["rich_text"][0]["text"]["content"] == "week:2025-01-06"

    def test_commas_removed_from_select(self):
        notion = FakeNotion()
        destination = _destination(notion)

        destination.create_page(
            {
                "title": PageProperty(PropertyType.TITLE, "T"),
                "Source": PageProperty(PropertyType.SELECT, "a,b"),
            },
            [],
        )

        assert notion.pages[0]["properties"]["Source"] == {"select": {"name": "a b"}}


class TestErrors:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (429, RateLimitError),
            (500, ServiceUnavailableError),
            (503, ServiceUnavailableError),
            (400, PermanentServiceError),
            (404, PermanentServiceError),
        ],
    )
    def test_status_mapping(self, status, expected):
        destination = _destination(lambda request: httpx.Response(status, json={"message": "x"}))

        with pytest.raises(expected):
            destination.create_page({"title": PageProperty(PropertyType.TITLE, "T")}, [])

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ServiceTimeoutError):
            _destination(handler).ensure_schema(REQUIRED_FIELDS)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ServiceUnavailableError):
            _destination(handler).ensure_schema(REQUIRED_FIELDS)

    def test_page_without_id(self):
        destination = _destination(lambda request: httpx.Response(200, json={}))

        with pytest.raises(PermanentServiceError):
            destination.create_page({"title": PageProperty(PropertyType.TITLE, "T")}, [])

    def test_requires_credentials(self):
        with pytest.raises(ConfigurationError):
            NotionDestination(api_key="", database_id="db-1")
