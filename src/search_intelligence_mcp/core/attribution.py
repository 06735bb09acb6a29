from __future__ import annotations

from datetime import date
from typing import Sequence

from search_intelligence_mcp.core.models import AlgorithmUpdate, Anomaly, DropAttribution, MetricRow

DEVICES = ("mobile", "desktop", "tablet")

ALGORITHM_UPDATES: tuple[AlgorithmUpdate, ...] = (
    AlgorithmUpdate("2022-09-12", "September 2022 Core Update"),
    AlgorithmUpdate("2022-09-20", "September 2022 Product Review Update"),
    AlgorithmUpdate("2022-10-19", "October 2022 Spam Update"),
    AlgorithmUpdate("2022-12-05", "December 2022 Helpful Content Update"),
    AlgorithmUpdate("2022-12-14", "December 2022 Link Spam Update"),
    AlgorithmUpdate("2023-02-21", "February 2023 Product Reviews Update"),
    AlgorithmUpdate("2023-03-15", "March 2023 Core Update"),
    AlgorithmUpdate("2023-04-12", "April 2023 Reviews Update"),
    AlgorithmUpdate("2023-08-22", "August 2023 Core Update"),
    AlgorithmUpdate("2023-09-14", "September 2023 Helpful Content Update"),
    AlgorithmUpdate("2023-10-04", "October 2023 Spam Update"),
    AlgorithmUpdate("2023-10-05", "October 2023 Core Update"),
    AlgorithmUpdate("2023-11-02", "November 2023 Core Update"),
    AlgorithmUpdate("2023-11-08", "November 2023 Reviews Update"),
    AlgorithmUpdate("2024-03-05", "March 2024 Core Update"),
    AlgorithmUpdate("2024-05-06", "Site Reputation Abuse (Manual Actions)"),
    AlgorithmUpdate("2024-05-14", "AI Overviews Rollout"),
    AlgorithmUpdate("2024-06-20", "June 2024 Spam Update"),
    AlgorithmUpdate("2024-08-15", "August 2024 Core Update"),
    AlgorithmUpdate("2024-11-11", "November 2024 Core Update"),
    AlgorithmUpdate("2024-12-12", "December 2024 Core Update"),
    AlgorithmUpdate("2024-12-19", "December 2024 Spam Update"),
    AlgorithmUpdate("2025-03-13", "March 2025 Core Update"),
    AlgorithmUpdate("2025-06-30", "June 2025 Core Update"),
    AlgorithmUpdate("2025-08-26", "August 2025 Spam Update"),
    AlgorithmUpdate("2025-12-11", "December 2025 Core Update"),
    AlgorithmUpdate("2026-02-05", "February 2026 Discover Core Update"),
)


def find_algorithm_updates(
    drop_date: str,
    *,
    window_days: int = 2,
    calendar: Sequence[AlgorithmUpdate] = ALGORITHM_UPDATES,
) -> list[AlgorithmUpdate]:
    """Updates dated within ``window_days`` of ``drop_date``, closest first."""
    try:
        day = date.fromisoformat(drop_date)
    except ValueError:
        return []

    matches: list[tuple[int, AlgorithmUpdate]] = []
    for update in calendar:
        distance = abs((day - date.fromisoformat(update.date)).days)
        if distance <= window_days:
            matches.append((distance, update))
    matches.sort(key=lambda m: m[0])
    return [update for _, update in matches]


def most_recent_drop(anomalies: Sequence[Anomaly]) -> Anomaly | None:
    drops = [a for a in anomalies if a.kind == "drop"]
    if not drops:
        return None
    return max(drops, key=lambda a: a.date)


def attribute_device_impact(
    drop_day_rows: Sequence[MetricRow],
    baseline_rows: Sequence[MetricRow],
    *,
    baseline_days: int = 7,
) -> tuple[dict[str, float], str]:
    """Per-device click deficit on the drop day versus the baseline daily mean.

    Rows are keyed by device. The device with the largest positive deficit is
    named as the primary cause.
    """
    actual: dict[str, float] = {}
    for row in drop_day_rows:
        device = row.dimension(0).lower()
        actual[device] = actual.get(device, 0.0) + row.clicks

    baseline: dict[str, float] = {}
    for row in baseline_rows:
        device = row.dimension(0).lower()
        baseline[device] = baseline.get(device, 0.0) + row.clicks / max(1, baseline_days)

    impacts: dict[str, float] = {}
    primary, max_deficit = None, 0.0
    for device in DEVICES:
        deficit = baseline.get(device, 0.0) - actual.get(device, 0.0)
        impacts[device] = round(deficit, 2)
        if deficit > max_deficit:
            primary, max_deficit = device, deficit

    if primary is None:
        return impacts, "Uniform drop across devices"
    return impacts, f"Disproportionate drop on {primary}"


def build_drop_attribution(
    drop: Anomaly,
    *,
    device_impact: dict[str, float] | None = None,
    primary_cause: str | None = None,
    window_days: int = 2,
) -> DropAttribution:
    updates = find_algorithm_updates(drop.date, window_days=window_days)
    return DropAttribution(
        date=drop.date,
        metric=drop.metric,
        total_drop=drop.value - drop.baseline_value,
        device_impact=device_impact or {device: 0.0 for device in DEVICES},
        primary_cause=primary_cause or "Traffic drop detected (device breakdown unavailable)",
        possible_algorithm_update=updates[0].name if updates else None,
        matched_updates=tuple(updates),
    )
