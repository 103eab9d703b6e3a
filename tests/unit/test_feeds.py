"""
Unit tests for the RSS feed fetcher.

Feeds are served from an httpx.MockTransport; nothing touches the network.
"""

from datetime import UTC, datetime

import httpx
import pytest

from technews.models import FeedSource
from technews.services.feeds import FeedConfig, FeedError, RssFeedFetcher, strip_html

FEED = FeedConfig(name="Test feed", url="https://feeds.example.com/rss", source=FeedSource.ABCBOURSE)

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>ABC Bourse</title>
    <item>
      <title>NVIDIA d\xc3\xa9voile une nouvelle puce IA</title>
      <link>https://www.abcbourse.com/marches/nvidia_1</link>
      <pubDate>Wed, 08 Jan 2025 09:30:00 +0100</pubDate>
      <description>&lt;p&gt;Le groupe a pr\xc3\xa9sent\xc3\xa9 sa nouvelle g\xc3\xa9n\xc3\xa9ration.&lt;/p&gt;</description>
    </item>
    <item>
      <title>Sans date</title>
      <link>https://www.abcbourse.com/marches/nodate_2</link>
    </item>
    <item>
      <title>Doublon</title>
      <link>https://www.abcbourse.com/marches/nvidia_1</link>
    </item>
    <item>
      <title></title>
      <link>https://www.abcbourse.com/marches/notitle_3</link>
    </item>
    <item>
      <title>Sans lien</title>
    </item>
  </channel>
</rss>
"""


def _fetcher(handler):
    return RssFeedFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestParse:
    def test_parse_entries(self):
        candidates = RssFeedFetcher(client=httpx.Client()).parse(RSS, FEED)

        assert [c.url for c in candidates] == [
            "https://www.abcbourse.com/marches/nvidia_1",
            "https://www.abcbourse.com/marches/nodate_2",
        ]
        first = candidates[0]
        assert first.title == "NVIDIA dévoile une nouvelle puce IA"
        assert first.published_at == datetime(2025, 1, 8, 8, 30, tzinfo=UTC)
        assert first.source == FeedSource.ABCBOURSE
        assert first.raw_content == "Le groupe a présenté sa nouvelle génération."

    def test_missing_date_uses_fetch_time(self):
        before = datetime.now(UTC)
        candidates = RssFeedFetcher(client=httpx.Client()).parse(RSS, FEED)

        assert candidates[1].published_at >= before.replace(microsecond=0)
        assert candidates[1].raw_content is None

    def test_limit(self):
        candidates = RssFeedFetcher(client=httpx.Client()).parse(RSS, FEED, limit=1)
        assert len(candidates) == 1

    def test_garbage_raises(self):
        with pytest.raises(FeedError):
            RssFeedFetcher(client=httpx.Client()).parse(b"<html><body>not a feed", FEED)

    def test_strip_html(self):
        assert strip_html("<p>Un   <b>texte</b></p>") == "Un texte"
        assert strip_html(None) == ""


class TestFetchCandidates:
    def test_fetch(self):
        seen = []

        def handler(request):
            seen.append(request.url)
            return httpx.Response(200, content=RSS)

        candidates = _fetcher(handler).fetch_candidates(FEED)

        assert len(candidates) == 2
        assert str(seen[0]) == FEED.url

    def test_http_error_wrapped(self):
        fetcher = _fetcher(lambda request: httpx.Response(404))

        with pytest.raises(FeedError):
            fetcher.fetch_candidates(FEED)

    def test_transport_error_retried(self, monkeypatch):
        # No real waiting between tenacity attempts
        monkeypatch.setattr(RssFeedFetcher._download.retry, "sleep", lambda seconds: None)
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=RSS)

        candidates = _fetcher(handler).fetch_candidates(FEED)

        assert len(attempts) == 3
        assert len(candidates) == 2
