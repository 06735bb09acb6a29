from __future__ import annotations

from typing import Sequence

from search_intelligence_mcp.core.models import Anomaly, MetricRow, TrendItem
from search_intelligence_mcp.core.normalization import percent_change


def detect_trends(
    current_rows: Sequence[MetricRow],
    previous_rows: Sequence[MetricRow],
    *,
    metric: str = "clicks",
    min_volume: float = 100,
    change_threshold: float = 10.0,
    limit: int | None = None,
) -> list[TrendItem]:
    """Compare two periods per grouping key.

    Keys below ``min_volume`` in the current period are skipped. A key absent
    from the previous period counts as new (+100%). ``change_threshold`` is in
    percent. Results are ordered by absolute value delta so large movers lead.
    """
    previous = {row.key: row.metric(metric) for row in previous_rows}

    items: list[TrendItem] = []
    for row in current_rows:
        current_value = row.metric(metric)
        if current_value < min_volume:
            continue

        previous_value = previous.get(row.key, 0.0)
        change = percent_change(current_value, previous_value)
        if abs(change) < change_threshold:
            continue

        items.append(
            TrendItem(
                key=row.key,
                current_value=current_value,
                previous_value=previous_value,
                percent_change=round(change, 2),
                direction="rising" if change > 0 else "declining",
            )
        )

    items.sort(key=lambda i: abs(i.current_value - i.previous_value), reverse=True)
    if limit is not None:
        return items[: max(0, limit)]
    return items


def detect_anomalies(
    rows: Sequence[MetricRow],
    *,
    metric: str = "clicks",
    window_size: int = 5,
    threshold: float = 0.25,
    min_volume: float = 10,
    lookback: int | None = None,
) -> list[Anomaly]:
    """Flag day-over-day jumps in a date-keyed series.

    ``threshold`` is a fraction (0.25 means a 25% move). Transitions whose
    prior value does not exceed ``min_volume`` are ignored.
    """
    series = sorted(rows, key=lambda r: r.dimension(0))
    if len(series) < window_size:
        return []
    if lookback is not None and lookback > 0:
        series = series[-lookback:]

    anomalies: list[Anomaly] = []
    for prev, curr in zip(series, series[1:]):
        baseline = prev.metric(metric)
        if baseline <= min_volume:
            continue

        value = curr.metric(metric)
        change = (value - baseline) / baseline
        if abs(change) < threshold:
            continue

        anomalies.append(
            Anomaly(
                date=curr.dimension(0),
                metric=metric,
                kind="drop" if change < 0 else "spike",
                value=value,
                baseline_value=baseline,
                percent_change=round(change * 100, 2),
            )
        )
    return anomalies
