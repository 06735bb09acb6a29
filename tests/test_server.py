from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import httpx
import pytest

from search_intelligence_mcp import server
from search_intelligence_mcp.connectors.bing import BingConnector
from search_intelligence_mcp.connectors.gsc import GSCConnector
from search_intelligence_mcp.core.engine import AnalyticsEngine
from search_intelligence_mcp.core.normalization import make_row
from search_intelligence_mcp.errors import InputError

SITE = "https://example.com/"


@pytest.fixture
def gsc_engine(monkeypatch, fake_source):
    def handler(query):
        if query.dimensions == ("query",):
            return [
                make_row(["shoes"], clicks=20, impressions=1000, position=7),
                make_row(["hats"], clicks=1, impressions=40, position=9),
            ]
        if query.dimensions == ():
            return [make_row([], clicks=100, impressions=1000, position=5)]
        return []

    engine = AnalyticsEngine(fake_source(handler), today=date(2024, 6, 20))
    monkeypatch.setitem(server._engines, "gsc", engine)
    return engine


def test_primitives() -> None:
    assert server.seo_primitive_ranking_bucket(12) == {"position": 12, "bucket": "Page 2 (11-20)"}
    assert server.seo_primitive_traffic_delta(0, 40)["status"] == "lost"
    assert server.seo_primitive_is_brand_query("Acme shoes", "acme")["is_brand"] is True

    check = server.seo_primitive_cannibalization_check("shoes", 5, 1000, 100, 5, 1000, 10)
    assert check["is_cannibalized"] is True


def test_unknown_source_is_rejected() -> None:
    with pytest.raises(InputError):
        server._get_engine("yahoo")


def test_blank_site_url_is_rejected() -> None:
    with pytest.raises(InputError):
        server._resolve_site_url("   ")


def test_capabilities_lists_tools() -> None:
    result = server.capabilities()
    assert "sites_health_check" in result["tools"]
    assert "ttl_seconds" in result["cache"]


@pytest.mark.asyncio
async def test_query_tool_serializes_rows(gsc_engine) -> None:
    result = await server.analytics_query(SITE, dimensions=["query"])

    assert result["source"] == "fake"
    assert (result["start_date"], result["end_date"]) == ("2024-05-21", "2024-06-17")
    assert result["row_count"] == 2
    assert result["rows"][0]["keys"] == ("shoes",)


@pytest.mark.asyncio
async def test_low_hanging_fruit_tool(gsc_engine) -> None:
    result = await server.seo_low_hanging_fruit(SITE)
    assert result["count"] == 1
    assert result["items"][0]["query"] == "shoes"


@pytest.mark.asyncio
async def test_health_tool_summary(gsc_engine) -> None:
    result = await server.sites_health_check()

    assert result["summary"] == {"total_sites": 1, "critical": 0, "warning": 0, "healthy": 1}
    assert result["reports"][0]["site_url"] == SITE


@pytest.mark.asyncio
async def test_drop_attribution_without_drop(gsc_engine) -> None:
    result = await server.analytics_drop_attribution(SITE)
    assert result["drop_detected"] is False


@pytest.mark.asyncio
async def test_inspect_and_sitemap_tools(monkeypatch) -> None:
    service = MagicMock()
    inspect_call = service.urlInspection.return_value.index.return_value.inspect
    inspect_call.return_value.execute.return_value = {
        "inspectionResult": {"indexStatusResult": {"verdict": "NEUTRAL"}}
    }
    service.sitemaps.return_value.submit.return_value.execute.return_value = ""
    monkeypatch.setattr(server, "_get_gsc_connector", lambda: GSCConnector(service=service))

    inspected = await server.gsc_inspect_url(" https://example.com/ ", "https://example.com/a")
    submitted = await server.gsc_submit_sitemap(SITE, "https://example.com/sitemap.xml")

    assert inspected["site_url"] == SITE
    assert inspected["result"]["indexStatusResult"]["verdict"] == "NEUTRAL"
    assert submitted == {
        "site_url": SITE,
        "feedpath": "https://example.com/sitemap.xml",
        "submitted": True,
    }


@pytest.mark.asyncio
async def test_bing_keyword_and_submission_tools(monkeypatch) -> None:
    paths = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append((request.method, request.url.path.rsplit("/", 1)[-1]))
        if request.url.path.endswith("/GetKeywordStats"):
            return httpx.Response(200, json={"d": [{"Keyword": "shoes", "Impressions": 5}]})
        return httpx.Response(200, json={"d": None})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    connector = BingConnector("test-key", client=client)
    monkeypatch.setattr(server, "_get_bing_connector", lambda: connector)

    stats = await server.bing_keyword_stats("shoes", country="us")
    submitted = await server.bing_submit_urls(SITE, ["https://example.com/a"])

    assert stats["stats"] == [{"Keyword": "shoes", "Impressions": 5}]
    assert submitted == {"site_url": SITE, "submitted": 1}
    assert paths == [("GET", "GetKeywordStats"), ("POST", "SubmitUrl")]


def test_capabilities_list_backend_write_tools() -> None:
    tools = server.capabilities()["tools"]
    for name in ("gsc_inspect_url", "gsc_submit_sitemap", "bing_keyword_stats", "indexnow_submit"):
        assert name in tools
