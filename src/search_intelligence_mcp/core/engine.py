from __future__ import annotations

import asyncio
import logging
from datetime import date, timedelta
from functools import partial
from typing import Any, Awaitable, Mapping, Sequence, TypeVar

from search_intelligence_mcp.config import (
    Settings,
    current_and_previous_ranges,
    default_settings,
    parse_date,
    reporting_end,
    reporting_window,
)
from search_intelligence_mcp.core import attribution, insights, trends
from search_intelligence_mcp.core.cache import AnalyticsCache
from search_intelligence_mcp.core.health import (
    evaluate_site_health,
    failed_report,
    sort_reports,
)
from search_intelligence_mcp.core.matching import Matcher, safe_match
from search_intelligence_mcp.core.models import (
    AnalyticsQuery,
    Anomaly,
    BrandSegment,
    CannibalizationIssue,
    DimensionFilter,
    DropAttribution,
    HealthReport,
    LowCTROpportunity,
    LowHangingFruit,
    LostQuery,
    MetricRow,
    PerformanceChanges,
    PerformanceSummary,
    PeriodComparison,
    QuickWin,
    Recommendation,
    StrikingDistanceQuery,
    TimeSeriesInsights,
    TrendItem,
)
from search_intelligence_mcp.core.normalization import percent_change, summarize_rows
from search_intelligence_mcp.core.scheduler import run_bounded
from search_intelligence_mcp.core.scoring import synthesize_recommendations
from search_intelligence_mcp.core.source import MetricSource
from search_intelligence_mcp.core.timeseries import analyze_time_series
from search_intelligence_mcp.errors import SourceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Filters = Sequence[DimensionFilter | Mapping[str, Any]] | None

HEALTH_ANOMALY_DAYS = 14
HEALTH_SENSITIVITY = 2.5
RECOMMENDATION_LIMIT = 10


def sensitivity_to_threshold(sensitivity: float) -> float:
    """Tool-level sensitivity (2.5) to the fractional day-over-day threshold (0.25)."""
    return sensitivity / 10


def compare_summaries(
    current: PerformanceSummary, previous: PerformanceSummary
) -> PeriodComparison:
    if previous.position > 0:
        position_percent = (current.position - previous.position) / previous.position * 100
    else:
        position_percent = 0.0

    return PeriodComparison(
        current=current,
        previous=previous,
        changes=PerformanceChanges(
            clicks=current.clicks - previous.clicks,
            clicks_percent=round(percent_change(current.clicks, previous.clicks), 2),
            impressions=current.impressions - previous.impressions,
            impressions_percent=round(
                percent_change(current.impressions, previous.impressions), 2
            ),
            ctr=round(current.ctr - previous.ctr, 4),
            ctr_percent=round(percent_change(current.ctr, previous.ctr), 2),
            position=round(current.position - previous.position, 2),
            position_percent=round(position_percent, 2),
        ),
    )


class AnalyticsEngine:
    """Analytical operations over one metric source.

    Every remote fetch goes through ``cache``, keyed by the query fingerprint
    and namespaced by the source name. The caller owns the cache and may share
    it between engines.
    """

    def __init__(
        self,
        source: MetricSource,
        *,
        cache: AnalyticsCache | None = None,
        settings: Settings | None = None,
        matcher: Matcher = safe_match,
        today: date | None = None,
    ) -> None:
        self.source = source
        self.settings = settings or default_settings()
        self.cache = cache or AnalyticsCache(self.settings.cache_ttl_seconds)
        self.matcher = matcher
        self._today = today

    def today(self) -> date:
        return self._today or date.today()

    def window(self, days: int) -> tuple[str, str]:
        return reporting_window(self.today(), days, self.settings.data_delay_days)

    async def fetch(self, query: AnalyticsQuery) -> list[MetricRow]:
        return await self.cache.get(
            query,
            partial(self.source.fetch_metric_rows, query),
            namespace=self.source.name,
        )

    async def query_analytics(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        *,
        dimensions: Sequence[str] | None = None,
        filters: Filters = None,
        row_limit: int | None = None,
        search_type: str = "web",
        start_row: int = 0,
    ) -> list[MetricRow]:
        query = AnalyticsQuery.build(
            site_url,
            start_date,
            end_date,
            dimensions=dimensions,
            filters=filters,
            row_limit=row_limit or self.settings.default_row_limit,
            search_type=search_type,
            start_row=start_row,
        )
        return await self.fetch(query)

    async def _window_rows(
        self, site_url: str, days: int, dimensions: Sequence[str]
    ) -> list[MetricRow]:
        start, end = self.window(days)
        return await self.query_analytics(site_url, start, end, dimensions=dimensions)

    async def performance_summary(
        self, site_url: str, *, days: int | None = None
    ) -> PerformanceSummary:
        start, end = self.window(days or self.settings.default_lookback_days)
        rows = await self.query_analytics(site_url, start, end)
        return summarize_rows(rows, start, end)

    async def compare_periods(
        self,
        site_url: str,
        current_start: str,
        current_end: str,
        previous_start: str,
        previous_end: str,
    ) -> PeriodComparison:
        current_rows, previous_rows = await asyncio.gather(
            self.query_analytics(site_url, current_start, current_end),
            self.query_analytics(site_url, previous_start, previous_end),
        )
        return compare_summaries(
            summarize_rows(current_rows, current_start, current_end),
            summarize_rows(previous_rows, previous_start, previous_end),
        )

    async def week_over_week(self, site_url: str) -> PeriodComparison:
        end = reporting_end(self.today(), self.settings.data_delay_days)
        ranges = current_and_previous_ranges(None, end.isoformat(), 7, today=self.today())
        (current_start, current_end) = ranges["current"]
        (previous_start, previous_end) = ranges["previous"]
        return await self.compare_periods(
            site_url, current_start, current_end, previous_start, previous_end
        )

    async def detect_trends(
        self,
        site_url: str,
        *,
        dimension: str = "query",
        days: int = 28,
        threshold: float = 10.0,
        min_clicks: float = 100,
        limit: int | None = 20,
        metric: str = "clicks",
    ) -> list[TrendItem]:
        start, end = self.window(days)
        ranges = current_and_previous_ranges(start, end, days)
        previous_start, previous_end = ranges["previous"]

        current_rows, previous_rows = await asyncio.gather(
            self.query_analytics(site_url, start, end, dimensions=[dimension]),
            self.query_analytics(site_url, previous_start, previous_end, dimensions=[dimension]),
        )
        return trends.detect_trends(
            current_rows,
            previous_rows,
            metric=metric,
            min_volume=min_clicks,
            change_threshold=threshold,
            limit=limit,
        )

    async def detect_anomalies(
        self,
        site_url: str,
        *,
        days: int = 30,
        sensitivity: float = HEALTH_SENSITIVITY,
        metric: str = "clicks",
        window_size: int = 5,
        min_volume: float = 10,
    ) -> list[Anomaly]:
        rows = await self._window_rows(site_url, days, ["date"])
        return trends.detect_anomalies(
            rows,
            metric=metric,
            window_size=window_size,
            threshold=sensitivity_to_threshold(sensitivity),
            min_volume=min_volume,
            lookback=days,
        )

    async def get_time_series_insights(
        self,
        site_url: str,
        *,
        days: int = 60,
        start_date: str | None = None,
        end_date: str | None = None,
        dimensions: Sequence[str] | None = None,
        metrics: Sequence[str] | None = None,
        granularity: str = "daily",
        filters: Filters = None,
        window: int = 7,
        forecast_days: int = 7,
    ) -> TimeSeriesInsights:
        dims = list(dimensions or ["date"])
        if "date" not in dims:
            dims.insert(0, "date")

        if start_date and end_date:
            start, end = start_date, end_date
        else:
            start, end = self.window(days)

        rows = await self.query_analytics(site_url, start, end, dimensions=dims, filters=filters)
        return analyze_time_series(
            rows,
            dimensions=dims,
            metrics=tuple(metrics or ("clicks",)),
            granularity=granularity,
            window=window,
            forecast_days=forecast_days,
        )

    async def analyze_drop_attribution(
        self, site_url: str, *, days: int = 30, sensitivity: float = 2.0
    ) -> DropAttribution | None:
        anomalies = await self.detect_anomalies(site_url, days=days, sensitivity=sensitivity)
        drop = attribution.most_recent_drop(anomalies)
        if drop is None:
            return None

        if not self.source.supports_device_breakdown:
            return attribution.build_drop_attribution(drop)

        drop_day = parse_date(drop.date)
        baseline_start = (drop_day - timedelta(days=7)).isoformat()
        baseline_end = (drop_day - timedelta(days=1)).isoformat()
        drop_rows, baseline_rows = await asyncio.gather(
            self.query_analytics(site_url, drop.date, drop.date, dimensions=["device"]),
            self.query_analytics(site_url, baseline_start, baseline_end, dimensions=["device"]),
        )
        impacts, cause = attribution.attribute_device_impact(drop_rows, baseline_rows)
        return attribution.build_drop_attribution(drop, device_impact=impacts, primary_cause=cause)

    async def find_low_hanging_fruit(
        self,
        site_url: str,
        *,
        days: int = 28,
        min_impressions: int = 100,
        limit: int | None = 50,
    ) -> list[LowHangingFruit]:
        rows = await self._window_rows(site_url, days, ["query"])
        return insights.find_low_hanging_fruit(rows, min_impressions=min_impressions, limit=limit)

    async def detect_cannibalization(
        self,
        site_url: str,
        *,
        days: int = 28,
        min_impressions: int = 50,
        limit: int | None = 30,
    ) -> list[CannibalizationIssue]:
        rows = await self._window_rows(site_url, days, ["query", "page"])
        return insights.detect_cannibalization(rows, min_impressions=min_impressions, limit=limit)

    async def find_low_ctr_opportunities(
        self,
        site_url: str,
        *,
        days: int = 28,
        min_impressions: int = 500,
        limit: int | None = 50,
    ) -> list[LowCTROpportunity]:
        rows = await self._window_rows(site_url, days, ["query", "page"])
        return insights.find_low_ctr_opportunities(
            rows, min_impressions=min_impressions, limit=limit
        )

    async def find_striking_distance(
        self, site_url: str, *, days: int = 28, limit: int | None = 50
    ) -> list[StrikingDistanceQuery]:
        rows = await self._window_rows(site_url, days, ["query", "page"])
        return insights.find_striking_distance(rows, limit=limit)

    async def find_lost_queries(
        self, site_url: str, *, days: int = 28, limit: int | None = 50
    ) -> list[LostQuery]:
        start, end = self.window(days)
        previous_start, previous_end = current_and_previous_ranges(start, end, days)["previous"]
        dims = ["query", "page"]
        current_rows, previous_rows = await asyncio.gather(
            self.query_analytics(site_url, start, end, dimensions=dims),
            self.query_analytics(site_url, previous_start, previous_end, dimensions=dims),
        )
        return insights.find_lost_queries(current_rows, previous_rows, limit=limit)

    async def analyze_brand_vs_non_brand(
        self, site_url: str, brand_pattern: str, *, days: int = 28
    ) -> list[BrandSegment]:
        rows = await self._window_rows(site_url, days, ["query"])
        return insights.analyze_brand_vs_non_brand(rows, brand_pattern, matcher=self.matcher)

    async def find_quick_wins(
        self,
        site_url: str,
        *,
        days: int = 28,
        min_impressions: int = 100,
        limit: int | None = 20,
    ) -> list[QuickWin]:
        rows = await self._window_rows(site_url, days, ["page", "query"])
        return insights.find_quick_wins(rows, min_impressions=min_impressions, limit=limit)

    async def _or_default(self, label: str, site_url: str, pending: Awaitable[T], default: T) -> T:
        try:
            return await pending
        except SourceError as exc:
            logger.warning("%s unavailable for %s: %s", label, site_url, exc)
            return default

    async def generate_recommendations(
        self, site_url: str, *, days: int = 28
    ) -> list[Recommendation]:
        lhf, cannibalization, quick_wins = await asyncio.gather(
            self._or_default(
                "Low-hanging fruit",
                site_url,
                self.find_low_hanging_fruit(site_url, days=days, limit=RECOMMENDATION_LIMIT),
                [],
            ),
            self._or_default(
                "Cannibalization",
                site_url,
                self.detect_cannibalization(site_url, days=days, limit=RECOMMENDATION_LIMIT),
                [],
            ),
            self._or_default(
                "Quick wins",
                site_url,
                self.find_quick_wins(site_url, days=days, limit=RECOMMENDATION_LIMIT),
                [],
            ),
        )
        return synthesize_recommendations(lhf, cannibalization, quick_wins)

    async def check_site(self, site_url: str) -> HealthReport:
        permission, sitemaps, comparison, anomalies, crawl_issues = await asyncio.gather(
            self._or_default(
                "Permission level", site_url, self.source.get_permission_level(site_url), "unknown"
            ),
            self._or_default("Sitemaps", site_url, self.source.list_sitemaps(site_url), None),
            self._or_default(
                "Week-over-week comparison", site_url, self.week_over_week(site_url), None
            ),
            self._or_default(
                "Anomaly scan",
                site_url,
                self.detect_anomalies(
                    site_url, days=HEALTH_ANOMALY_DAYS, sensitivity=HEALTH_SENSITIVITY
                ),
                [],
            ),
            self._or_default(
                "Crawl issues", site_url, self.source.count_crawl_issues(site_url), 0
            ),
        )
        return evaluate_site_health(
            site_url,
            comparison=comparison,
            sitemaps=sitemaps or [],
            anomalies=anomalies,
            crawl_issues=crawl_issues,
            permission_level=permission,
            sitemaps_available=sitemaps is not None,
        )

    async def health_check(self, site_url: str | None = None) -> list[HealthReport]:
        """Health reports for one site, or every site the source can see.

        Sites are checked through the bounded scheduler; a site whose check
        fails outright gets a critical report naming the error. Reports are
        ordered critical, warning, healthy.
        """
        sites = [site_url] if site_url else await self.source.list_sites()
        results = await run_bounded(
            [partial(self.check_site, site) for site in sites],
            self.settings.health_check_concurrency,
        )
        reports = [
            result.value if result.ok else failed_report(site, result.error)
            for site, result in zip(sites, results)
        ]
        return sort_reports(reports)
