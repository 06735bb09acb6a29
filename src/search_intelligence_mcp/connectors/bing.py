from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping, Sequence

import httpx

from search_intelligence_mcp.auth import get_bing_api_key
from search_intelligence_mcp.config import parse_date
from search_intelligence_mcp.core.models import AnalyticsQuery, MetricRow, SitemapInfo
from search_intelligence_mcp.core.normalization import (
    aggregate_rows,
    apply_filters,
    make_row,
    parse_bing_date,
)
from search_intelligence_mcp.errors import (
    InputError,
    NotFoundError,
    SourceError,
    source_error_from_status,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://ssl.bing.com/webmaster/api.svc/json"

# Endpoint and the fields each of its rows carries, keyed by requested dimensions.
_ENDPOINTS: dict[tuple[str, ...], tuple[str, tuple[str, ...]]] = {
    (): ("GetRankAndTrafficStats", ("date",)),
    ("date",): ("GetRankAndTrafficStats", ("date",)),
    ("query",): ("GetQueryStats", ("query", "date")),
    ("page",): ("GetPageStats", ("page", "date")),
    ("query", "page"): ("GetQueryPageStats", ("query", "page", "date")),
    ("page", "query"): ("GetQueryPageStats", ("query", "page", "date")),
}


def _raw_keys(raw: Mapping[str, Any], fields: Sequence[str], day: date) -> list[str]:
    keys: list[str] = []
    for field in fields:
        if field == "date":
            keys.append(day.isoformat())
        elif field == "query":
            keys.append(str(raw.get("Query") or ""))
        elif field == "page":
            # GetPageStats reports the URL in the Query field.
            keys.append(str(raw.get("Page") or raw.get("Query") or ""))
    return keys


def _with_iso_dates(items: Any) -> Any:
    """Rewrite Bing ``/Date(ms)/`` values in a record (or list of records) as ISO dates."""
    if isinstance(items, list):
        return [_with_iso_dates(item) for item in items]
    if not isinstance(items, dict):
        return items
    converted = dict(items)
    for field, value in items.items():
        if isinstance(value, str) and value.startswith("/Date("):
            day = parse_bing_date(value)
            converted[field] = day.isoformat() if day else None
    return converted


class BingConnector:
    """Bing Webmaster Tools JSON API as a metric source.

    Bing returns the full history of a report with no date parameters, so
    rows are filtered by date and re-aggregated on this side.
    """

    name = "bing"
    supports_device_breakdown = False

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        base_url: str = BASE_URL,
    ) -> None:
        self._api_key = get_bing_api_key(api_key)
        self._client = client
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")

    async def _request(
        self,
        method: str,
        params: Mapping[str, Any] | None = None,
        *,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}/{method}"
        # Write endpoints take a JSON body; the key always travels in the query string.
        query: dict[str, Any] = {"apikey": self._api_key}
        query.update({k: v for k, v in (params or {}).items() if v is not None})
        verb = "POST" if body is not None else "GET"
        try:
            if self._client is not None:
                response = await self._client.request(
                    verb, url, params=query, json=body, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(verb, url, params=query, json=body)
        except httpx.HTTPError as exc:
            raise SourceError(self.name, f"{method} failed: {exc}") from exc

        if response.status_code >= 400:
            raise source_error_from_status(
                self.name, response.status_code, f"{method}: {response.text[:200]}"
            )

        if not response.content:
            return None

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceError(self.name, f"{method} returned invalid JSON") from exc

        if isinstance(data, dict) and "d" in data:
            return data["d"]
        return data

    async def _user_sites(self) -> list[dict[str, Any]]:
        return list(await self._request("GetUserSites") or [])

    async def list_sites(self) -> list[str]:
        return [site["Url"] for site in await self._user_sites() if site.get("Url")]

    async def get_permission_level(self, site_url: str) -> str:
        for site in await self._user_sites():
            if site.get("Url") == site_url:
                role = site.get("Role")
                return str(role) if role not in (None, "") else "unknown"
        raise NotFoundError(self.name, f"Site {site_url} is not registered in Bing Webmaster Tools")

    async def list_sitemaps(self, site_url: str) -> list[SitemapInfo]:
        feeds = await self._request("GetFeeds", {"siteUrl": site_url}) or []
        sitemaps: list[SitemapInfo] = []
        for feed in feeds:
            submitted = parse_bing_date(feed.get("LastCrawled") or feed.get("Submitted"))
            sitemaps.append(
                SitemapInfo(
                    path=feed.get("Url") or feed.get("Path") or "unknown",
                    type=feed.get("Type"),
                    status=feed.get("Status"),
                    last_downloaded=submitted.isoformat() if submitted else None,
                )
            )
        return sitemaps

    async def list_crawl_issues(self, site_url: str) -> list[dict[str, Any]]:
        issues = await self._request("GetCrawlIssues", {"siteUrl": site_url}) or []
        return _with_iso_dates(list(issues))

    async def count_crawl_issues(self, site_url: str) -> int:
        return len(await self.list_crawl_issues(site_url))

    async def get_crawl_stats(self, site_url: str) -> list[dict[str, Any]]:
        stats = await self._request("GetCrawlStats", {"siteUrl": site_url}) or []
        return _with_iso_dates(list(stats))

    async def get_url_info(self, site_url: str, url: str) -> dict[str, Any]:
        info = await self._request("GetUrlInfo", {"siteUrl": site_url, "url": url}) or {}
        return _with_iso_dates(info)

    async def get_link_counts(self, site_url: str) -> list[dict[str, Any]]:
        return list(await self._request("GetLinkCounts", {"siteUrl": site_url}) or [])

    async def get_keyword_stats(
        self, keyword: str, *, country: str | None = None, language: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"q": keyword, "country": country, "language": language}
        stats = await self._request("GetKeywordStats", params) or []
        return _with_iso_dates(list(stats))

    async def get_related_keywords(
        self, keyword: str, *, country: str | None = None, language: str | None = None
    ) -> list[dict[str, Any]]:
        params = {"q": keyword, "country": country, "language": language}
        return list(await self._request("GetRelatedKeywords", params) or [])

    async def submit_sitemap(self, site_url: str, feed_url: str) -> None:
        await self._request("SubmitFeed", body={"siteUrl": site_url, "feedUrl": feed_url})
        logger.info("Submitted feed %s for %s", feed_url, site_url)

    async def remove_sitemap(self, site_url: str, feed_url: str) -> None:
        await self._request("RemoveFeed", body={"siteUrl": site_url, "feedUrl": feed_url})
        logger.info("Removed feed %s for %s", feed_url, site_url)

    async def get_url_submission_quota(self, site_url: str) -> dict[str, Any]:
        return await self._request("GetUrlSubmissionQuota", {"siteUrl": site_url}) or {}

    async def submit_urls(self, site_url: str, urls: Sequence[str]) -> int:
        """Submit URLs for indexing; one URL uses SubmitUrl, more use SubmitUrlBatch."""
        url_list = [url for url in urls if url]
        if not url_list:
            raise InputError("At least one URL is required.")
        if len(url_list) == 1:
            await self._request("SubmitUrl", body={"siteUrl": site_url, "url": url_list[0]})
        else:
            await self._request("SubmitUrlBatch", body={"siteUrl": site_url, "urlList": url_list})
        logger.info("Submitted %d URL(s) for %s", len(url_list), site_url)
        return len(url_list)

    async def fetch_metric_rows(self, query: AnalyticsQuery) -> list[MetricRow]:
        dimensions = tuple(query.dimensions)
        if dimensions not in _ENDPOINTS:
            raise InputError(
                f"Bing does not support dimensions {list(dimensions)}; use none, "
                "['date'], ['query'], ['page'] or ['query', 'page']."
            )
        method, fields = _ENDPOINTS[dimensions]

        unsupported = [f.dimension for f in query.filters if f.dimension not in fields]
        if unsupported:
            raise InputError(
                f"Bing cannot filter {method} rows on {', '.join(sorted(set(unsupported)))}."
            )

        start = parse_date(query.start_date)
        end = parse_date(query.end_date)

        raw_rows = await self._request(method, {"siteUrl": query.site_url}) or []
        rows: list[MetricRow] = []
        for raw in raw_rows:
            day = parse_bing_date(raw.get("Date"))
            if day is None or not start <= day <= end:
                continue
            rows.append(
                make_row(
                    _raw_keys(raw, fields, day),
                    clicks=raw.get("Clicks"),
                    impressions=raw.get("Impressions"),
                    position=raw.get("AvgPosition"),
                )
            )

        rows = apply_filters(rows, fields, query.filters)
        projected = [
            MetricRow(
                keys=tuple(row.keys[fields.index(d)] for d in dimensions),
                clicks=row.clicks,
                impressions=row.impressions,
                ctr=row.ctr,
                position=row.position,
            )
            for row in rows
        ]
        merged = aggregate_rows(projected)

        if "date" in dimensions:
            merged.sort(key=lambda r: r.keys)
        else:
            merged.sort(key=lambda r: r.clicks, reverse=True)

        window = merged[query.start_row : query.start_row + query.row_limit]
        logger.debug("%s: %d raw rows, %d after aggregation", method, len(raw_rows), len(window))
        return window
