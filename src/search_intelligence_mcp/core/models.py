from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Literal, Mapping, Sequence

from search_intelligence_mcp.errors import InputError

ALLOWED_DIMENSIONS = ("query", "page", "country", "device", "date", "searchAppearance")
ALLOWED_OPERATORS = (
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "includingRegex",
    "excludingRegex",
)
SEARCH_TYPES = ("web", "image", "video", "news", "discover", "googleNews")
METRICS = ("clicks", "impressions", "ctr", "position")
MAX_ROW_LIMIT = 25000

AnomalyKind = Literal["drop", "spike"]
TrendDirection = Literal["rising", "declining"]
ForecastTrend = Literal["up", "down", "stable"]
Priority = Literal["high", "medium", "low"]
HealthStatus = Literal["healthy", "warning", "critical"]


def to_dict(value: Any) -> Any:
    """Serialize a value object (or a list of them) for a tool response."""
    if isinstance(value, list):
        return [to_dict(v) for v in value]
    if value is None:
        return None
    return asdict(value)


@dataclass(frozen=True)
class MetricRow:
    keys: tuple[str, ...]
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    position: float = 0.0

    @property
    def key(self) -> str:
        if len(self.keys) == 1:
            return self.keys[0]
        return " | ".join(self.keys)

    def dimension(self, index: int) -> str:
        if index < len(self.keys):
            return self.keys[index]
        return ""

    def metric(self, name: str) -> float:
        if name not in METRICS:
            raise InputError(f"Unknown metric {name!r}; expected one of {', '.join(METRICS)}.")
        return float(getattr(self, name))


@dataclass(frozen=True)
class DimensionFilter:
    dimension: str
    operator: str
    expression: str

    def as_api(self) -> dict[str, str]:
        return {
            "dimension": self.dimension,
            "operator": self.operator,
            "expression": self.expression,
        }


def _check_date(value: str, label: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise InputError(f"Invalid {label} {value!r}; expected YYYY-MM-DD.") from exc


@dataclass(frozen=True)
class AnalyticsQuery:
    site_url: str
    start_date: str
    end_date: str
    dimensions: tuple[str, ...] = ()
    filters: tuple[DimensionFilter, ...] = ()
    row_limit: int = 1000
    search_type: str = "web"
    start_row: int = 0

    @classmethod
    def build(
        cls,
        site_url: str,
        start_date: str,
        end_date: str,
        *,
        dimensions: Sequence[str] | None = None,
        filters: Sequence[DimensionFilter | Mapping[str, Any]] | None = None,
        row_limit: int = 1000,
        search_type: str = "web",
        start_row: int = 0,
    ) -> "AnalyticsQuery":
        parsed_filters: list[DimensionFilter] = []
        for item in filters or []:
            if isinstance(item, DimensionFilter):
                parsed_filters.append(item)
                continue
            try:
                parsed_filters.append(
                    DimensionFilter(
                        dimension=str(item["dimension"]),
                        operator=str(item.get("operator", "equals")),
                        expression=str(item["expression"]),
                    )
                )
            except KeyError as exc:
                raise InputError(f"Filter is missing field {exc.args[0]!r}.") from exc

        query = cls(
            site_url=site_url,
            start_date=start_date,
            end_date=end_date,
            dimensions=tuple(dimensions or ()),
            filters=tuple(parsed_filters),
            row_limit=row_limit,
            search_type=search_type,
            start_row=start_row,
        )
        query.validate()
        return query

    def validate(self) -> None:
        if not self.site_url or not self.site_url.strip():
            raise InputError("site_url cannot be empty.")

        start = _check_date(self.start_date, "start_date")
        end = _check_date(self.end_date, "end_date")
        if start > end:
            raise InputError(f"start_date {self.start_date} is after end_date {self.end_date}.")

        unknown = [d for d in self.dimensions if d not in ALLOWED_DIMENSIONS]
        if unknown:
            raise InputError(
                f"Unknown dimension(s) {', '.join(unknown)}; "
                f"expected any of {', '.join(ALLOWED_DIMENSIONS)}."
            )
        if len(set(self.dimensions)) != len(self.dimensions):
            raise InputError("dimensions must be unique.")

        for item in self.filters:
            if item.dimension not in ALLOWED_DIMENSIONS:
                raise InputError(f"Unknown filter dimension {item.dimension!r}.")
            if item.operator not in ALLOWED_OPERATORS:
                raise InputError(
                    f"Unknown filter operator {item.operator!r}; "
                    f"expected one of {', '.join(ALLOWED_OPERATORS)}."
                )

        if not 1 <= self.row_limit <= MAX_ROW_LIMIT:
            raise InputError(f"row_limit must be between 1 and {MAX_ROW_LIMIT}.")
        if self.start_row < 0:
            raise InputError("start_row cannot be negative.")
        if self.search_type not in SEARCH_TYPES:
            raise InputError(
                f"Unknown search_type {self.search_type!r}; "
                f"expected one of {', '.join(SEARCH_TYPES)}."
            )

    def fingerprint(self, namespace: str = "") -> str:
        # Filters are AND-ed inside one group, so their order carries no meaning.
        filters = sorted(
            (f.dimension, f.operator, f.expression) for f in self.filters
        )
        payload = [
            namespace,
            self.site_url,
            self.start_date,
            self.end_date,
            list(self.dimensions),
            [list(f) for f in filters],
            self.row_limit,
            self.search_type,
            self.start_row,
        ]
        serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Anomaly:
    date: str
    metric: str
    kind: AnomalyKind
    value: float
    baseline_value: float
    percent_change: float


@dataclass(frozen=True)
class TrendItem:
    key: str
    current_value: float
    previous_value: float
    percent_change: float
    direction: TrendDirection


@dataclass(frozen=True)
class TimeSeriesPoint:
    label: str
    metrics: Mapping[str, float]
    rolling_averages: Mapping[str, float]
    dimensions: Mapping[str, str] = field(default_factory=dict)
    is_seasonal_peak: bool = False


@dataclass(frozen=True)
class ForecastResult:
    trend: ForecastTrend
    forecasted_values: Mapping[str, tuple[int, ...]]
    seasonality_strength: float


@dataclass(frozen=True)
class TimeSeriesInsights:
    granularity: str
    history: tuple[TimeSeriesPoint, ...]
    forecast: ForecastResult


@dataclass(frozen=True)
class LowHangingFruit:
    query: str
    impressions: int
    clicks: int
    ctr: float
    position: float
    potential_clicks: int


@dataclass(frozen=True)
class CompetingPage:
    page: str
    clicks: int
    impressions: int
    position: float
    ctr: float


@dataclass(frozen=True)
class CannibalizationIssue:
    query: str
    pages: tuple[CompetingPage, ...]
    total_clicks: int
    total_impressions: int
    click_share_conflict: float


@dataclass(frozen=True)
class QuickWin:
    page: str
    query: str
    position: float
    impressions: int
    potential_clicks: int


@dataclass(frozen=True)
class StrikingDistanceQuery:
    query: str
    page: str
    position: float
    impressions: int
    clicks: int
    potential_clicks: int


@dataclass(frozen=True)
class LowCTROpportunity:
    query: str
    page: str
    position: float
    impressions: int
    clicks: int
    ctr: float
    benchmark_ctr: float


@dataclass(frozen=True)
class LostQuery:
    query: str
    page: str
    previous_clicks: int
    previous_impressions: int
    previous_position: float
    current_clicks: int
    current_impressions: int
    current_position: float
    lost_clicks: int


@dataclass(frozen=True)
class BrandSegment:
    segment: Literal["Brand", "Non-Brand"]
    clicks: int
    impressions: int
    ctr: float
    position: float
    query_count: int


@dataclass(frozen=True)
class AlgorithmUpdate:
    date: str
    name: str


@dataclass(frozen=True)
class DropAttribution:
    date: str
    metric: str
    total_drop: float
    device_impact: Mapping[str, float]
    primary_cause: str
    possible_algorithm_update: str | None = None
    matched_updates: tuple[AlgorithmUpdate, ...] = ()


@dataclass(frozen=True)
class Recommendation:
    type: Literal["opportunity", "warning", "success"]
    category: str
    title: str
    description: str
    priority: Priority
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PerformanceSummary:
    start_date: str
    end_date: str
    clicks: int
    impressions: int
    ctr: float
    position: float


@dataclass(frozen=True)
class PerformanceChanges:
    clicks: float
    clicks_percent: float
    impressions: float
    impressions_percent: float
    ctr: float
    ctr_percent: float
    position: float
    position_percent: float


@dataclass(frozen=True)
class PeriodComparison:
    current: PerformanceSummary
    previous: PerformanceSummary
    changes: PerformanceChanges


@dataclass(frozen=True)
class SitemapInfo:
    path: str
    type: str | None = None
    is_pending: bool = False
    errors: int = 0
    warnings: int = 0
    last_downloaded: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class SitemapSummary:
    total: int
    with_errors: int
    with_warnings: int
    details: tuple[SitemapInfo, ...] = ()


@dataclass(frozen=True)
class HealthReport:
    site_url: str
    status: HealthStatus
    permission_level: str
    performance: PeriodComparison | None
    sitemaps: SitemapSummary
    anomalies: tuple[Anomaly, ...]
    crawl_issues: int
    issues: tuple[str, ...]
