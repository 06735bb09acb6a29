from __future__ import annotations

from typing import Protocol, runtime_checkable

from search_intelligence_mcp.core.models import AnalyticsQuery, MetricRow, SitemapInfo


@runtime_checkable
class MetricSource(Protocol):
    """What the engine needs from a search analytics backend.

    Implementations normalize rows into ``MetricRow`` at their boundary and
    raise ``SourceError`` subclasses for auth, quota and not-found failures.
    """

    name: str
    supports_device_breakdown: bool

    async def fetch_metric_rows(self, query: AnalyticsQuery) -> list[MetricRow]: ...

    async def list_sites(self) -> list[str]: ...

    async def get_permission_level(self, site_url: str) -> str: ...

    async def list_sitemaps(self, site_url: str) -> list[SitemapInfo]: ...

    async def count_crawl_issues(self, site_url: str) -> int: ...
