from __future__ import annotations

import asyncio
from datetime import date, timedelta
from typing import Any, Callable, Iterable, Sequence

import pytest

from search_intelligence_mcp.core.models import AnalyticsQuery, MetricRow, SitemapInfo
from search_intelligence_mcp.core.normalization import make_row

Handler = Callable[[AnalyticsQuery], Iterable[MetricRow]]


class FakeSource:
    """In-memory metric source that records every query it serves."""

    name = "fake"

    def __init__(
        self,
        handler: Handler | None = None,
        *,
        supports_device_breakdown: bool = True,
        sites: Sequence[str] = ("https://example.com/",),
        sitemaps: Sequence[SitemapInfo] | None = None,
        permission_level: str = "siteOwner",
        crawl_issues: int = 0,
        failures: dict[str, Exception] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.handler = handler or (lambda query: [])
        self.supports_device_breakdown = supports_device_breakdown
        self.sites = list(sites)
        self.sitemaps = (
            list(sitemaps)
            if sitemaps is not None
            else [SitemapInfo(path="https://example.com/sitemap.xml")]
        )
        self.permission_level = permission_level
        self.crawl_issues = crawl_issues
        self.failures = failures or {}
        self.delay = delay
        self.queries: list[AnalyticsQuery] = []
        self.active_sitemap_calls = 0
        self.max_active_sitemap_calls = 0

    def _maybe_fail(self, method: str) -> None:
        if method in self.failures:
            raise self.failures[method]

    async def fetch_metric_rows(self, query: AnalyticsQuery) -> list[MetricRow]:
        self.queries.append(query)
        await asyncio.sleep(self.delay)
        self._maybe_fail("fetch_metric_rows")
        return list(self.handler(query))

    async def list_sites(self) -> list[str]:
        self._maybe_fail("list_sites")
        return list(self.sites)

    async def get_permission_level(self, site_url: str) -> str:
        self._maybe_fail("get_permission_level")
        return self.permission_level

    async def list_sitemaps(self, site_url: str) -> list[SitemapInfo]:
        self.active_sitemap_calls += 1
        self.max_active_sitemap_calls = max(
            self.max_active_sitemap_calls, self.active_sitemap_calls
        )
        try:
            await asyncio.sleep(self.delay)
            self._maybe_fail("list_sitemaps")
            return list(self.sitemaps)
        finally:
            self.active_sitemap_calls -= 1

    async def count_crawl_issues(self, site_url: str) -> int:
        self._maybe_fail("count_crawl_issues")
        return self.crawl_issues


def daily(
    start: str, values: Sequence[float], *, impressions: int | None = None
) -> list[MetricRow]:
    first = date.fromisoformat(start)
    return [
        make_row(
            [(first + timedelta(days=i)).isoformat()],
            clicks=value,
            impressions=impressions if impressions is not None else int(value) * 10,
            position=5.0,
        )
        for i, value in enumerate(values)
    ]


def row(*keys: str, **metrics: Any) -> MetricRow:
    return make_row(list(keys), **metrics)


@pytest.fixture
def fake_source() -> type[FakeSource]:
    return FakeSource


@pytest.fixture
def daily_rows() -> Callable[..., list[MetricRow]]:
    return daily


@pytest.fixture
def metric_row() -> Callable[..., MetricRow]:
    return row
