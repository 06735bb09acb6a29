from __future__ import annotations

from collections import Counter
from typing import Any

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from search_intelligence_mcp.config import Settings, configure_logging, load_settings
from search_intelligence_mcp.connectors.bing import BingConnector
from search_intelligence_mcp.connectors.gsc import GSCConnector
from search_intelligence_mcp.connectors.indexnow import submit_index_now
from search_intelligence_mcp.core.cache import AnalyticsCache
from search_intelligence_mcp.core.engine import AnalyticsEngine
from search_intelligence_mcp.core.models import to_dict
from search_intelligence_mcp.core.scoring import (
    PageMetrics,
    cannibalization_check,
    is_brand_query,
    ranking_bucket,
    traffic_delta,
)
from search_intelligence_mcp.errors import InputError

load_dotenv()

mcp = FastMCP("search-intelligence-mcp")
_settings = load_settings()
_cache = AnalyticsCache(_settings.cache_ttl_seconds)
_gsc_connector: GSCConnector | None = None
_bing_connector: BingConnector | None = None
_engines: dict[str, AnalyticsEngine] = {}

SOURCES = ("gsc", "bing")


def _get_settings() -> Settings:
    return _settings


def _get_gsc_connector() -> GSCConnector:
    global _gsc_connector
    settings = _get_settings()
    if not settings.enable_gsc:
        raise RuntimeError("GSC connector is disabled. Set ENABLE_GSC=true.")
    if _gsc_connector is None:
        _gsc_connector = GSCConnector(timeout=settings.request_timeout_seconds)
    return _gsc_connector


def _get_bing_connector() -> BingConnector:
    global _bing_connector
    settings = _get_settings()
    if not settings.enable_bing:
        raise RuntimeError("Bing connector is disabled. Set ENABLE_BING=true and BING_API_KEY.")
    if _bing_connector is None:
        _bing_connector = BingConnector(
            settings.bing_api_key, timeout=settings.request_timeout_seconds
        )
    return _bing_connector


def _get_engine(source: str) -> AnalyticsEngine:
    source = source.strip().lower()
    if source not in SOURCES:
        raise InputError(f"Unknown source {source!r}; expected one of {', '.join(SOURCES)}.")
    if source not in _engines:
        connector = _get_gsc_connector() if source == "gsc" else _get_bing_connector()
        _engines[source] = AnalyticsEngine(connector, cache=_cache, settings=_get_settings())
    return _engines[source]


def _resolve_site_url(site_url: str) -> str:
    resolved = site_url.strip()
    if not resolved:
        raise InputError("site_url cannot be empty.")
    return resolved


@mcp.tool()
def capabilities() -> dict[str, Any]:
    """Show enabled sources, defaults, and cache state."""
    settings = _get_settings()
    return {
        "sources": {
            "gsc_enabled": settings.enable_gsc,
            "bing_enabled": settings.enable_bing,
        },
        "defaults": {
            "lookback_days": settings.default_lookback_days,
            "data_delay_days": settings.data_delay_days,
            "row_limit": settings.default_row_limit,
            "health_check_concurrency": settings.health_check_concurrency,
        },
        "cache": {"ttl_seconds": _cache.ttl_seconds, **_cache.stats()},
        "tools": [
            "gsc_list_sites",
            "gsc_search_analytics_raw",
            "gsc_list_sitemaps",
            "gsc_get_sitemap",
            "gsc_submit_sitemap",
            "gsc_delete_sitemap",
            "gsc_inspect_url",
            "bing_list_sites",
            "bing_list_sitemaps",
            "bing_crawl_issues",
            "bing_crawl_stats",
            "bing_submit_sitemap",
            "bing_remove_sitemap",
            "bing_url_info",
            "bing_link_counts",
            "bing_keyword_stats",
            "bing_related_keywords",
            "bing_url_submission_quota",
            "bing_submit_urls",
            "indexnow_submit",
            "analytics_query",
            "analytics_performance_summary",
            "analytics_compare_periods",
            "analytics_trends",
            "analytics_anomalies",
            "analytics_time_series",
            "analytics_drop_attribution",
            "seo_low_hanging_fruit",
            "seo_cannibalization",
            "seo_low_ctr_opportunities",
            "seo_striking_distance",
            "seo_lost_queries",
            "seo_brand_vs_non_brand",
            "seo_quick_wins",
            "seo_recommendations",
            "sites_health_check",
            "seo_primitive_ranking_bucket",
            "seo_primitive_traffic_delta",
            "seo_primitive_is_brand_query",
            "seo_primitive_cannibalization_check",
        ],
    }


@mcp.tool()
async def gsc_list_sites() -> dict[str, Any]:
    """List Search Console properties available to the authenticated account."""
    sites = await _get_gsc_connector().list_sites()
    return {"count": len(sites), "sites": sites}


@mcp.tool()
async def gsc_search_analytics_raw(
    site_url: str,
    start_date: str | None = None,
    end_date: str | None = None,
    dimensions: list[str] | None = None,
    row_limit: int = 25000,
    start_row: int = 0,
    search_type: str = "web",
    data_state: str | None = None,
    aggregation_type: str | None = None,
    dimension_filter_groups: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Run a raw Search Console Search Analytics query with full options."""
    connector = _get_gsc_connector()
    resolved_site = _resolve_site_url(site_url)
    default_start, default_end = _get_engine("gsc").window(_get_settings().default_lookback_days)
    resolved_start = start_date or default_start
    resolved_end = end_date or default_end

    response = await connector.search_analytics(
        resolved_site,
        resolved_start,
        resolved_end,
        dimensions=dimensions,
        row_limit=row_limit,
        start_row=start_row,
        search_type=search_type,
        data_state=data_state,
        aggregation_type=aggregation_type,
        dimension_filter_groups=dimension_filter_groups,
    )

    return {
        "site_url": resolved_site,
        "start_date": resolved_start,
        "end_date": resolved_end,
        "dimensions": dimensions or [],
        "row_count": len(response.get("rows", [])),
        "response": response,
    }


@mcp.tool()
async def gsc_list_sitemaps(site_url: str) -> dict[str, Any]:
    """List sitemaps submitted to Search Console for a property."""
    sitemaps = await _get_gsc_connector().list_sitemaps(_resolve_site_url(site_url))
    return {"count": len(sitemaps), "sitemaps": to_dict(sitemaps)}


@mcp.tool()
async def gsc_get_sitemap(site_url: str, feedpath: str) -> dict[str, Any]:
    """Show one Search Console sitemap: status, errors, warnings and submitted URL counts."""
    return await _get_gsc_connector().get_sitemap(_resolve_site_url(site_url), feedpath)


@mcp.tool()
async def gsc_submit_sitemap(site_url: str, feedpath: str) -> dict[str, Any]:
    """Submit (or resubmit) a sitemap URL to Search Console."""
    resolved_site = _resolve_site_url(site_url)
    await _get_gsc_connector().submit_sitemap(resolved_site, feedpath)
    return {"site_url": resolved_site, "feedpath": feedpath, "submitted": True}


@mcp.tool()
async def gsc_delete_sitemap(site_url: str, feedpath: str) -> dict[str, Any]:
    """Remove a sitemap from Search Console. Pages already indexed stay indexed."""
    resolved_site = _resolve_site_url(site_url)
    await _get_gsc_connector().delete_sitemap(resolved_site, feedpath)
    return {"site_url": resolved_site, "feedpath": feedpath, "deleted": True}


@mcp.tool()
async def gsc_inspect_url(
    site_url: str, inspection_url: str, language_code: str = "en-US"
) -> dict[str, Any]:
    """Inspect a URL's index status, coverage, canonical and mobile usability in Google."""
    resolved_site = _resolve_site_url(site_url)
    result = await _get_gsc_connector().inspect_url(
        resolved_site, inspection_url, language_code=language_code
    )
    return {"site_url": resolved_site, "inspection_url": inspection_url, "result": result}


@mcp.tool()
async def bing_list_sites() -> dict[str, Any]:
    """List sites registered in Bing Webmaster Tools."""
    sites = await _get_bing_connector().list_sites()
    return {"count": len(sites), "sites": sites}


@mcp.tool()
async def bing_list_sitemaps(site_url: str) -> dict[str, Any]:
    """List sitemap feeds submitted to Bing for a site."""
    sitemaps = await _get_bing_connector().list_sitemaps(_resolve_site_url(site_url))
    return {"count": len(sitemaps), "sitemaps": to_dict(sitemaps)}


@mcp.tool()
async def bing_crawl_issues(site_url: str) -> dict[str, Any]:
    """List crawl issues Bing reports for a site."""
    resolved_site = _resolve_site_url(site_url)
    issues = await _get_bing_connector().list_crawl_issues(resolved_site)
    return {"site_url": resolved_site, "crawl_issues": len(issues), "issues": issues}


@mcp.tool()
async def bing_crawl_stats(site_url: str) -> dict[str, Any]:
    """Daily crawl statistics from Bing: pages crawled, indexed and crawl errors."""
    resolved_site = _resolve_site_url(site_url)
    stats = await _get_bing_connector().get_crawl_stats(resolved_site)
    return {"site_url": resolved_site, "count": len(stats), "stats": stats}


@mcp.tool()
async def bing_submit_sitemap(site_url: str, feed_url: str) -> dict[str, Any]:
    """Submit a sitemap feed to Bing."""
    resolved_site = _resolve_site_url(site_url)
    await _get_bing_connector().submit_sitemap(resolved_site, feed_url)
    return {"site_url": resolved_site, "feed_url": feed_url, "submitted": True}


@mcp.tool()
async def bing_remove_sitemap(site_url: str, feed_url: str) -> dict[str, Any]:
    """Remove a sitemap feed from Bing."""
    resolved_site = _resolve_site_url(site_url)
    await _get_bing_connector().remove_sitemap(resolved_site, feed_url)
    return {"site_url": resolved_site, "feed_url": feed_url, "removed": True}


@mcp.tool()
async def bing_url_info(site_url: str, url: str) -> dict[str, Any]:
    """Index and crawl details Bing holds for one URL (HTTP status, last crawl, links)."""
    return await _get_bing_connector().get_url_info(_resolve_site_url(site_url), url)


@mcp.tool()
async def bing_link_counts(site_url: str) -> dict[str, Any]:
    """Inbound link counts per page of a site, as seen by Bing."""
    resolved_site = _resolve_site_url(site_url)
    links = await _get_bing_connector().get_link_counts(resolved_site)
    return {"site_url": resolved_site, "count": len(links), "links": links}


@mcp.tool()
async def bing_keyword_stats(
    keyword: str, country: str | None = None, language: str | None = None
) -> dict[str, Any]:
    """Historical Bing search impressions for a keyword (country "us", language "en-US")."""
    stats = await _get_bing_connector().get_keyword_stats(
        keyword, country=country, language=language
    )
    return {"keyword": keyword, "count": len(stats), "stats": stats}


@mcp.tool()
async def bing_related_keywords(
    keyword: str, country: str | None = None, language: str | None = None
) -> dict[str, Any]:
    """Keywords Bing considers related to a keyword, with search volume."""
    related = await _get_bing_connector().get_related_keywords(
        keyword, country=country, language=language
    )
    return {"keyword": keyword, "count": len(related), "keywords": related}


@mcp.tool()
async def bing_url_submission_quota(site_url: str) -> dict[str, Any]:
    """Remaining daily and monthly URL submission quota for a site."""
    resolved_site = _resolve_site_url(site_url)
    quota = await _get_bing_connector().get_url_submission_quota(resolved_site)
    return {"site_url": resolved_site, **quota}


@mcp.tool()
async def bing_submit_urls(site_url: str, urls: list[str]) -> dict[str, Any]:
    """Submit one or more URLs to Bing for indexing (counts against the daily quota)."""
    resolved_site = _resolve_site_url(site_url)
    submitted = await _get_bing_connector().submit_urls(resolved_site, urls)
    return {"site_url": resolved_site, "submitted": submitted}


@mcp.tool()
async def indexnow_submit(
    host: str, key: str, urls: list[str], key_location: str | None = None
) -> dict[str, Any]:
    """Notify IndexNow engines (Bing, Yandex, ...) that URLs on a host changed."""
    submitted = await submit_index_now(
        host.strip(),
        key.strip(),
        urls,
        key_location=key_location,
        timeout=_get_settings().request_timeout_seconds,
    )
    return {"host": host.strip(), "submitted": submitted}


@mcp.tool()
async def analytics_query(
    site_url: str,
    source: str = "gsc",
    start_date: str | None = None,
    end_date: str | None = None,
    dimensions: list[str] | None = None,
    filters: list[dict[str, str]] | None = None,
    row_limit: int | None = None,
    search_type: str = "web",
    start_row: int = 0,
) -> dict[str, Any]:
    """Query normalized rows (keys, clicks, impressions, ctr, position).

    Filters are AND-ed: [{"dimension": "query", "operator": "contains", "expression": "shoes"}].
    """
    engine = _get_engine(source)
    resolved_site = _resolve_site_url(site_url)
    default_start, default_end = engine.window(_get_settings().default_lookback_days)
    resolved_start = start_date or default_start
    resolved_end = end_date or default_end

    rows = await engine.query_analytics(
        resolved_site,
        resolved_start,
        resolved_end,
        dimensions=dimensions,
        filters=filters,
        row_limit=row_limit,
        search_type=search_type,
        start_row=start_row,
    )
    return {
        "source": engine.source.name,
        "site_url": resolved_site,
        "start_date": resolved_start,
        "end_date": resolved_end,
        "dimensions": dimensions or [],
        "row_count": len(rows),
        "rows": to_dict(rows),
    }


@mcp.tool()
async def analytics_performance_summary(
    site_url: str, source: str = "gsc", days: int | None = None
) -> dict[str, Any]:
    """Aggregate clicks, impressions, CTR and position for the last N days (data lags ~3 days)."""
    summary = await _get_engine(source).performance_summary(
        _resolve_site_url(site_url), days=days
    )
    return to_dict(summary)


@mcp.tool()
async def analytics_compare_periods(
    site_url: str,
    current_start: str,
    current_end: str,
    previous_start: str,
    previous_end: str,
    source: str = "gsc",
) -> dict[str, Any]:
    """Compare performance between two date ranges (week-over-week, month-over-month)."""
    comparison = await _get_engine(source).compare_periods(
        _resolve_site_url(site_url), current_start, current_end, previous_start, previous_end
    )
    return to_dict(comparison)


@mcp.tool()
async def analytics_trends(
    site_url: str,
    source: str = "gsc",
    dimension: str = "query",
    days: int = 28,
    threshold: float = 10.0,
    min_clicks: float = 100,
    limit: int = 20,
) -> dict[str, Any]:
    """Detect rising and declining queries or pages against the previous period."""
    items = await _get_engine(source).detect_trends(
        _resolve_site_url(site_url),
        dimension=dimension,
        days=days,
        threshold=threshold,
        min_clicks=min_clicks,
        limit=limit,
    )
    directions = Counter(item.direction for item in items)
    return {"summary": dict(directions), "trends": to_dict(items)}


@mcp.tool()
async def analytics_anomalies(
    site_url: str, source: str = "gsc", days: int = 30, sensitivity: float = 2.5
) -> dict[str, Any]:
    """Identify day-over-day spikes and drops. Sensitivity 2.5 flags moves of 25% or more."""
    anomalies = await _get_engine(source).detect_anomalies(
        _resolve_site_url(site_url), days=days, sensitivity=sensitivity
    )
    return {"count": len(anomalies), "anomalies": to_dict(anomalies)}


@mcp.tool()
async def analytics_time_series(
    site_url: str,
    source: str = "gsc",
    days: int = 60,
    start_date: str | None = None,
    end_date: str | None = None,
    dimensions: list[str] | None = None,
    metrics: list[str] | None = None,
    granularity: str = "daily",
    filters: list[dict[str, str]] | None = None,
    window: int = 7,
    forecast_days: int = 7,
) -> dict[str, Any]:
    """Bucketed history with rolling averages, weekday seasonality and a linear forecast."""
    result = await _get_engine(source).get_time_series_insights(
        _resolve_site_url(site_url),
        days=days,
        start_date=start_date,
        end_date=end_date,
        dimensions=dimensions,
        metrics=metrics,
        granularity=granularity,
        filters=filters,
        window=window,
        forecast_days=forecast_days,
    )
    return to_dict(result)


@mcp.tool()
async def analytics_drop_attribution(
    site_url: str, source: str = "gsc", days: int = 30, sensitivity: float = 2.0
) -> dict[str, Any]:
    """Explain the most recent traffic drop by device and known algorithm update dates."""
    result = await _get_engine(source).analyze_drop_attribution(
        _resolve_site_url(site_url), days=days, sensitivity=sensitivity
    )
    if result is None:
        return {"drop_detected": False, "message": "No significant traffic drop detected."}
    return {"drop_detected": True, "attribution": to_dict(result)}


@mcp.tool()
async def seo_low_hanging_fruit(
    site_url: str,
    source: str = "gsc",
    days: int = 28,
    min_impressions: int = 100,
    limit: int = 50,
) -> dict[str, Any]:
    """Queries ranking 5-20 with high impressions and unrealized click potential."""
    items = await _get_engine(source).find_low_hanging_fruit(
        _resolve_site_url(site_url), days=days, min_impressions=min_impressions, limit=limit
    )
    return {"count": len(items), "items": to_dict(items)}


@mcp.tool()
async def seo_cannibalization(
    site_url: str,
    source: str = "gsc",
    days: int = 28,
    min_impressions: int = 50,
    limit: int = 30,
) -> dict[str, Any]:
    """Queries where several pages compete and split clicks."""
    issues = await _get_engine(source).detect_cannibalization(
        _resolve_site_url(site_url), days=days, min_impressions=min_impressions, limit=limit
    )
    return {"count": len(issues), "issues": to_dict(issues)}


@mcp.tool()
async def seo_low_ctr_opportunities(
    site_url: str,
    source: str = "gsc",
    days: int = 28,
    min_impressions: int = 500,
    limit: int = 50,
) -> dict[str, Any]:
    """Page-one rankings whose CTR is well below the position benchmark."""
    items = await _get_engine(source).find_low_ctr_opportunities(
        _resolve_site_url(site_url), days=days, min_impressions=min_impressions, limit=limit
    )
    return {"count": len(items), "items": to_dict(items)}


@mcp.tool()
async def seo_striking_distance(
    site_url: str, source: str = "gsc", days: int = 28, limit: int = 50
) -> dict[str, Any]:
    """Query/page pairs ranking 8-15, one push away from the top of page one."""
    items = await _get_engine(source).find_striking_distance(
        _resolve_site_url(site_url), days=days, limit=limit
    )
    return {"count": len(items), "items": to_dict(items)}


@mcp.tool()
async def seo_lost_queries(
    site_url: str, source: str = "gsc", days: int = 28, limit: int = 50
) -> dict[str, Any]:
    """Query/page pairs that lost most or all of their clicks versus the previous period."""
    items = await _get_engine(source).find_lost_queries(
        _resolve_site_url(site_url), days=days, limit=limit
    )
    return {
        "count": len(items),
        "total_lost_clicks": sum(item.lost_clicks for item in items),
        "items": to_dict(items),
    }


@mcp.tool()
async def seo_brand_vs_non_brand(
    site_url: str, brand_pattern: str, source: str = "gsc", days: int = 28
) -> dict[str, Any]:
    """Split traffic into brand and non-brand queries using a regex such as 'acme|acme corp'."""
    segments = await _get_engine(source).analyze_brand_vs_non_brand(
        _resolve_site_url(site_url), brand_pattern, days=days
    )
    return {"brand_pattern": brand_pattern, "segments": to_dict(segments)}


@mcp.tool()
async def seo_quick_wins(
    site_url: str,
    source: str = "gsc",
    days: int = 28,
    min_impressions: int = 100,
    limit: int = 20,
) -> dict[str, Any]:
    """Pages with queries on page two (positions 11-20)."""
    items = await _get_engine(source).find_quick_wins(
        _resolve_site_url(site_url), days=days, min_impressions=min_impressions, limit=limit
    )
    return {"count": len(items), "items": to_dict(items)}


@mcp.tool()
async def seo_recommendations(
    site_url: str, source: str = "gsc", days: int = 28
) -> dict[str, Any]:
    """Prioritized recommendations combining ranking, cannibalization and quick-win analysis."""
    items = await _get_engine(source).generate_recommendations(
        _resolve_site_url(site_url), days=days
    )
    priority_counts = Counter(item.priority for item in items)
    return {
        "summary": {"total_items": len(items), "priority_counts": dict(priority_counts)},
        "recommendations": to_dict(items),
    }


@mcp.tool()
async def sites_health_check(site_url: str | None = None, source: str = "gsc") -> dict[str, Any]:
    """Health report for one site, or for every accessible site when site_url is omitted."""
    engine = _get_engine(source)
    reports = await engine.health_check(_resolve_site_url(site_url) if site_url else None)
    status_counts = Counter(report.status for report in reports)
    return {
        "source": engine.source.name,
        "summary": {
            "total_sites": len(reports),
            "critical": status_counts.get("critical", 0),
            "warning": status_counts.get("warning", 0),
            "healthy": status_counts.get("healthy", 0),
        },
        "reports": to_dict(reports),
    }


@mcp.tool()
def seo_primitive_ranking_bucket(position: float) -> dict[str, Any]:
    """Classify an average position into Top 3, Page 1, Page 2, Page 3+ or Unranked."""
    return to_dict(ranking_bucket(position))


@mcp.tool()
def seo_primitive_traffic_delta(current: float, previous: float) -> dict[str, Any]:
    """Absolute and percent change between two values, with a new/lost/increased status."""
    return to_dict(traffic_delta(current, previous))


@mcp.tool()
def seo_primitive_is_brand_query(query: str, brand_pattern: str) -> dict[str, Any]:
    """Check a query against a brand regex (case-insensitive; invalid patterns never match)."""
    return to_dict(is_brand_query(query, brand_pattern))


@mcp.tool()
def seo_primitive_cannibalization_check(
    query: str,
    page_a_position: float,
    page_a_impressions: float,
    page_a_clicks: float,
    page_b_position: float,
    page_b_impressions: float,
    page_b_clicks: float,
) -> dict[str, Any]:
    """Score how strongly two pages compete for one query."""
    result = cannibalization_check(
        query,
        PageMetrics(page_a_position, page_a_impressions, page_a_clicks),
        PageMetrics(page_b_position, page_b_impressions, page_b_clicks),
    )
    return to_dict(result)


def main() -> None:
    configure_logging(_get_settings().log_level)
    mcp.run()


if __name__ == "__main__":
    main()
