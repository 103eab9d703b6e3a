# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import json
import os
from datetime import datetime

import pytest

# Set test environment before technews.database builds its engine
os.environ.setdefault("TESTING", "1")
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("NOTION_API_KEY", "")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from technews import models  # noqa: E402
from technews.database import Base  # noqa: E402
from technews.destinations.base import DestinationService  # noqa: E402
from technews.llm.base import Completion, TextService  # noqa: E402
from technews.services.resilience import RetryPolicy  # noqa: E402


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "llm: tests requiring LLM API calls (deselect with '-m \"not llm\"')")
    config.addinivalue_line("markers", "network: tests requiring network access")


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test, shared across threads."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def make_item(db):
    """Insert an item and return it."""
    from technews.services.item_store import ItemStore

    store = ItemStore(db)
    counter = {"n": 0}

    def _make(title=None, body="", published_at=None, url=None, source=models.FeedSource.ABCBOURSE):
        counter["n"] += 1
        n = counter["n"]
        item = store.build_item(
            title=title or f"Item {n}",
            url=url or f"https://example.com/news/{n}",
            published_at=published_at or datetime(2025, 1, 6, 8, n % 60),
            body=body,
            source=source,
        )
        store.upsert(item)
        return item

    return _make


# -----------------------------------------------------------------------------
# Fake external services
# -----------------------------------------------------------------------------


class FakeTextService(TextService):
    """
    Scripted text service.

    `responses` is consumed in order; an Exception entry is raised instead of
    returned. Once exhausted, `default` is returned.
    """

    def __init__(self, responses=None, default=None, tokens=42):
        self.responses = list(responses or [])
        self.default = default
        self.tokens = tokens
        self.calls = []

    @property
    def name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-model"

    def complete(self, system_prompt, user_prompt, max_tokens, temperature=0.3, json_mode=False, call_type="completion"):
        self.calls.append({"system": system_prompt, "user": user_prompt, "call_type": call_type})
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        if response is None:
            if call_type == "summary":
                response = json.dumps(
                    {"shortSummary": "Résumé court.", "detailedSummary": "Premier paragraphe.\n\nSecond paragraphe."}
                )
            else:
                response = "Les valeurs tech ont dominé la période."
        return Completion(text=response, tokens_used=self.tokens)


class FakeDestination(DestinationService):
    """In-memory destination recording every call."""

    def __init__(self, fail_schema=None, fail_pages=None):
        self.pages = []
        self.schema_calls = []
        self.fail_schema = fail_schema
        self.fail_pages = list(fail_pages or [])

    @property
    def name(self) -> str:
        return "fake"

    def ensure_schema(self, required_fields, database_id=None):
        self.schema_calls.append((dict(required_fields), database_id))
        if self.fail_schema:
            raise self.fail_schema

    def create_page(self, properties, content, database_id=None):
        if self.fail_pages:
            raise self.fail_pages.pop(0)
        page_id = f"page-{len(self.pages) + 1}"
        self.pages.append({"id": page_id, "properties": properties, "content": content, "database_id": database_id})
        return page_id


@pytest.fixture
def text_service():
    return FakeTextService()


@pytest.fixture
def destination():
    return FakeDestination()


@pytest.fixture
def no_wait_policy():
    """Retry policy with zero delays."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0, backoff_factor=2.0)


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    calls = []

    def _sleep(seconds):
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


@pytest.fixture
def make_text_service():
    return FakeTextService


@pytest.fixture
def make_destination():
    return FakeDestination
