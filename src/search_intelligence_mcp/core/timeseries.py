from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Sequence

from search_intelligence_mcp.core.models import (
    ForecastResult,
    MetricRow,
    TimeSeriesInsights,
    TimeSeriesPoint,
)
from search_intelligence_mcp.errors import InputError

COUNT_METRICS = frozenset({"clicks", "impressions"})
RATE_METRICS = frozenset({"ctr", "position"})
GRANULARITIES = ("daily", "weekly")

SEASONALITY_MIN_POINTS = 14
TREND_DEAD_ZONE = 0.05


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _parse_day(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def week_start(day: date) -> date:
    """Monday of the ISO week containing ``day``."""
    return day - timedelta(days=day.weekday())


def _bucket_label(value: str, granularity: str) -> str:
    if granularity == "daily":
        return value
    day = _parse_day(value)
    if day is None:
        return value
    return week_start(day).isoformat()


def _combine(metric: str, values: list[float]) -> float:
    if not values:
        return 0.0
    if metric in RATE_METRICS:
        return sum(values) / len(values)
    return float(sum(values))


def bucket_rows(
    rows: Sequence[MetricRow],
    *,
    dimensions: Sequence[str],
    metrics: Sequence[str],
    granularity: str = "daily",
) -> list[tuple[str, dict[str, str], dict[str, float]]]:
    """Group rows into (bucket label, extra dimensions, metric values).

    Count metrics are summed per bucket and rate metrics averaged. Output is
    sorted by bucket label, then by dimension values.
    """
    if granularity not in GRANULARITIES:
        raise InputError(f"granularity must be one of {', '.join(GRANULARITIES)}.")
    if "date" not in dimensions:
        raise InputError("Time series rows must be grouped by the 'date' dimension.")

    date_index = list(dimensions).index("date")
    extra = [(i, d) for i, d in enumerate(dimensions) if d != "date"]

    grouped: dict[tuple[str, tuple[str, ...]], dict[str, list[float]]] = defaultdict(
        lambda: defaultdict(list)
    )
    for row in rows:
        label = _bucket_label(row.dimension(date_index), granularity)
        dims = tuple(row.dimension(i) for i, _ in extra)
        values = grouped[(label, dims)]
        for metric in metrics:
            values[metric].append(row.metric(metric))

    buckets = []
    for (label, dims), values in sorted(grouped.items()):
        buckets.append(
            (
                label,
                {name: dims[pos] for pos, (_, name) in enumerate(extra)},
                {m: _combine(m, values[m]) for m in metrics},
            )
        )
    return buckets


def rolling_averages(
    values: Sequence[dict[str, float]], metrics: Sequence[str], window: int
) -> list[dict[str, float]]:
    """Trailing simple moving average, clipped at the start of the series."""
    if window < 1:
        raise InputError("window must be at least 1.")

    averages: list[dict[str, float]] = []
    for i in range(len(values)):
        span = values[max(0, i - window + 1) : i + 1]
        averages.append(
            {m: round(sum(v[m] for v in span) / len(span), 2) for m in metrics}
        )
    return averages


def seasonality(labels: Sequence[str], values: Sequence[float]) -> tuple[float, int | None]:
    """Day-of-week seasonality strength in [0, 1] and the peak weekday.

    Needs at least two weeks of daily points; otherwise ``(0.0, None)``.
    """
    if len(values) < SEASONALITY_MIN_POINTS:
        return 0.0, None

    by_weekday: list[list[float]] = [[] for _ in range(7)]
    for label, value in zip(labels, values):
        day = _parse_day(label)
        if day is not None:
            by_weekday[day.weekday()].append(value)

    means = [sum(v) / len(v) if v else 0.0 for v in by_weekday]
    grand_mean = sum(means) / 7
    if grand_mean == 0:
        return 0.0, None

    std_dev = math.sqrt(sum((m - grand_mean) ** 2 for m in means) / 7)
    strength = round(min(1.0, std_dev / grand_mean), 2)
    return strength, means.index(max(means))


def linear_regression(values: Sequence[float]) -> tuple[float, float] | None:
    """Ordinary least squares over (index, value); ``None`` below two points."""
    n = len(values)
    if n < 2:
        return None

    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_xx = sum(i * i for i in range(n))

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    return slope, intercept


def forecast(
    series: Sequence[dict[str, float]],
    metrics: Sequence[str],
    *,
    forecast_days: int = 7,
    seasonality_strength: float = 0.0,
) -> ForecastResult:
    trend = "stable"
    projected: dict[str, tuple[int, ...]] = {}

    for metric in metrics:
        fit = linear_regression([point[metric] for point in series])
        if fit is None:
            projected[metric] = ()
            continue

        slope, intercept = fit
        if metric == metrics[0]:
            if slope > TREND_DEAD_ZONE:
                trend = "up"
            elif slope < -TREND_DEAD_ZONE:
                trend = "down"

        n = len(series)
        projected[metric] = tuple(
            _round_half_up(max(0.0, slope * i + intercept))
            for i in range(n, n + max(0, forecast_days))
        )

    return ForecastResult(
        trend=trend,
        forecasted_values=projected,
        seasonality_strength=seasonality_strength,
    )


def build_series(
    rows: Sequence[MetricRow],
    *,
    dimensions: Sequence[str] = ("date",),
    metrics: Sequence[str] = ("clicks",),
    granularity: str = "daily",
    window: int = 7,
) -> list[TimeSeriesPoint]:
    """Bucketed points with rolling averages, one series per dimension combo."""
    buckets = bucket_rows(rows, dimensions=dimensions, metrics=metrics, granularity=granularity)

    by_group: dict[tuple[str, ...], list[int]] = defaultdict(list)
    for index, (_, dims, _) in enumerate(buckets):
        by_group[tuple(sorted(dims.items()))].append(index)

    averages: dict[int, dict[str, float]] = {}
    for indexes in by_group.values():
        group_values = [buckets[i][2] for i in indexes]
        for i, avg in zip(indexes, rolling_averages(group_values, metrics, window)):
            averages[i] = avg

    return [
        TimeSeriesPoint(
            label=label,
            dimensions=dims,
            metrics=values,
            rolling_averages=averages[i],
        )
        for i, (label, dims, values) in enumerate(buckets)
    ]


def analyze_time_series(
    rows: Sequence[MetricRow],
    *,
    dimensions: Sequence[str] = ("date",),
    metrics: Sequence[str] = ("clicks",),
    granularity: str = "daily",
    window: int = 7,
    forecast_days: int = 7,
) -> TimeSeriesInsights:
    if not metrics:
        raise InputError("At least one metric is required.")

    history = build_series(
        rows, dimensions=dimensions, metrics=metrics, granularity=granularity, window=window
    )

    # Seasonality and the forecast look at the per-bucket totals.
    date_index = list(dimensions).index("date")
    total_rows = [
        MetricRow(
            keys=(row.dimension(date_index),),
            clicks=row.clicks,
            impressions=row.impressions,
            ctr=row.ctr,
            position=row.position,
        )
        for row in rows
    ]
    totals = bucket_rows(
        total_rows, dimensions=("date",), metrics=metrics, granularity=granularity
    )
    labels = [label for label, _, _ in totals]
    series = [values for _, _, values in totals]

    strength, peak_weekday = 0.0, None
    if granularity == "daily":
        strength, peak_weekday = seasonality(labels, [v[metrics[0]] for v in series])

    if peak_weekday is not None:
        marked = []
        for point in history:
            day = _parse_day(point.label)
            is_peak = day is not None and day.weekday() == peak_weekday
            marked.append(
                TimeSeriesPoint(
                    label=point.label,
                    dimensions=point.dimensions,
                    metrics=point.metrics,
                    rolling_averages=point.rolling_averages,
                    is_seasonal_peak=is_peak,
                )
            )
        history = marked

    return TimeSeriesInsights(
        granularity=granularity,
        history=tuple(history),
        forecast=forecast(
            series, metrics, forecast_days=forecast_days, seasonality_strength=strength
        ),
    )
