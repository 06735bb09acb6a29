from __future__ import annotations

import re
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Mapping, Sequence

from search_intelligence_mcp.core.matching import safe_match
from search_intelligence_mcp.core.models import DimensionFilter, MetricRow, PerformanceSummary

_BING_DATE = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")


def to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    try:
        if value is None:
            return default
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _weighted_average(sum_weighted: float, sum_weight: float, fallback: float = 0.0) -> float:
    if sum_weight <= 0:
        return fallback
    return sum_weighted / sum_weight


def _ctr(clicks: int, impressions: int, reported: Any = None) -> float:
    if reported is not None:
        value = to_float(reported)
    elif impressions > 0:
        value = clicks / impressions
    else:
        value = 0.0
    return min(1.0, max(0.0, value))


def make_row(
    keys: Sequence[Any],
    *,
    clicks: Any = None,
    impressions: Any = None,
    ctr: Any = None,
    position: Any = None,
) -> MetricRow:
    clicks_value = max(0, to_int(clicks))
    impressions_value = max(0, to_int(impressions))
    return MetricRow(
        keys=tuple("" if k is None else str(k) for k in keys),
        clicks=clicks_value,
        impressions=impressions_value,
        ctr=_ctr(clicks_value, impressions_value, ctr),
        position=max(0.0, to_float(position)),
    )


def row_from_gsc(raw: Mapping[str, Any]) -> MetricRow:
    return make_row(
        raw.get("keys") or (),
        clicks=raw.get("clicks"),
        impressions=raw.get("impressions"),
        ctr=raw.get("ctr"),
        position=raw.get("position"),
    )


def parse_bing_date(value: Any) -> date | None:
    """Bing returns either ``/Date(1705305600000-0800)/`` or ISO strings."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    match = _BING_DATE.fullmatch(text)
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date()

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def aggregate_rows(rows: Sequence[MetricRow], key_count: int | None = None) -> list[MetricRow]:
    """Merge rows that share a grouping key, keeping first-seen order.

    ``key_count`` truncates keys before grouping; ``0`` collapses everything
    into a single total row.
    """
    bucket: dict[tuple[str, ...], dict[str, float]] = defaultdict(
        lambda: {
            "clicks": 0.0,
            "impressions": 0.0,
            "position_weighted": 0.0,
            "position_sum": 0.0,
            "rows": 0,
        }
    )

    for row in rows:
        keys = row.keys if key_count is None else row.keys[:key_count]
        item = bucket[keys]
        item["clicks"] += row.clicks
        item["impressions"] += row.impressions
        item["position_weighted"] += row.position * row.impressions
        item["position_sum"] += row.position
        item["rows"] += 1

    merged: list[MetricRow] = []
    for keys, item in bucket.items():
        clicks = int(item["clicks"])
        impressions = int(item["impressions"])
        simple_position = item["position_sum"] / item["rows"] if item["rows"] else 0.0
        merged.append(
            MetricRow(
                keys=keys,
                clicks=clicks,
                impressions=impressions,
                ctr=_ctr(clicks, impressions),
                position=_weighted_average(
                    item["position_weighted"], impressions, simple_position
                ),
            )
        )
    return merged


def matches_filter(row: MetricRow, dimensions: Sequence[str], item: DimensionFilter) -> bool:
    if item.dimension not in dimensions:
        return True

    value = row.dimension(list(dimensions).index(item.dimension))
    operator = item.operator
    if operator == "equals":
        return value == item.expression
    if operator == "notEquals":
        return value != item.expression
    if operator == "contains":
        return item.expression.lower() in value.lower()
    if operator == "notContains":
        return item.expression.lower() not in value.lower()
    if operator == "includingRegex":
        return safe_match(item.expression, value, ignore_case=False)
    if operator == "excludingRegex":
        return not safe_match(item.expression, value, ignore_case=False)
    return False


def apply_filters(
    rows: Sequence[MetricRow],
    dimensions: Sequence[str],
    filters: Sequence[DimensionFilter],
) -> list[MetricRow]:
    if not filters:
        return list(rows)
    return [r for r in rows if all(matches_filter(r, dimensions, f) for f in filters)]


def percent_change(current: float, previous: float) -> float:
    """Relative change in percent; growth from zero counts as 100%."""
    if previous > 0:
        return (current - previous) / previous * 100
    return 100.0 if current > 0 else 0.0


def summarize_rows(rows: Sequence[MetricRow], start_date: str, end_date: str) -> PerformanceSummary:
    totals = aggregate_rows(rows, key_count=0)
    if not totals:
        return PerformanceSummary(start_date, end_date, 0, 0, 0.0, 0.0)

    total = totals[0]
    return PerformanceSummary(
        start_date=start_date,
        end_date=end_date,
        clicks=total.clicks,
        impressions=total.impressions,
        ctr=round(total.ctr, 4),
        position=round(total.position, 2),
    )
