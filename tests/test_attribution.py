from __future__ import annotations

from search_intelligence_mcp.core.attribution import (
    attribute_device_impact,
    build_drop_attribution,
    find_algorithm_updates,
    most_recent_drop,
)
from search_intelligence_mcp.core.models import AlgorithmUpdate, Anomaly


def _anomaly(day: str, kind: str = "drop", value: float = 10, baseline: float = 100) -> Anomaly:
    return Anomaly(
        date=day,
        metric="clicks",
        kind=kind,
        value=value,
        baseline_value=baseline,
        percent_change=(value - baseline) / baseline * 100,
    )


def test_update_two_days_away_matches_three_days_does_not() -> None:
    assert [u.name for u in find_algorithm_updates("2024-03-07")] == ["March 2024 Core Update"]
    assert [u.name for u in find_algorithm_updates("2024-03-03")] == ["March 2024 Core Update"]
    assert find_algorithm_updates("2024-03-08") == []


def test_updates_ordered_closest_first() -> None:
    names = [u.name for u in find_algorithm_updates("2023-10-05")]
    assert names == ["October 2023 Core Update", "October 2023 Spam Update"]


def test_custom_calendar_and_bad_dates() -> None:
    calendar = [AlgorithmUpdate("2020-01-10", "Test Update")]
    assert find_algorithm_updates("2020-01-11", calendar=calendar) == calendar
    assert find_algorithm_updates("not-a-date") == []


def test_most_recent_drop_ignores_spikes() -> None:
    anomalies = [
        _anomaly("2024-01-05"),
        _anomaly("2024-01-09"),
        _anomaly("2024-01-12", kind="spike", value=300),
    ]
    assert most_recent_drop(anomalies).date == "2024-01-09"
    assert most_recent_drop([_anomaly("2024-01-12", kind="spike", value=300)]) is None


def test_disproportionate_device_is_named(metric_row) -> None:
    baseline = [
        metric_row("MOBILE", clicks=700),
        metric_row("DESKTOP", clicks=350),
        metric_row("TABLET", clicks=70),
    ]
    drop_day = [
        metric_row("MOBILE", clicks=40),
        metric_row("DESKTOP", clicks=48),
        metric_row("TABLET", clicks=10),
    ]

    impacts, cause = attribute_device_impact(drop_day, baseline)

    assert impacts == {"mobile": 60.0, "desktop": 2.0, "tablet": 0.0}
    assert cause == "Disproportionate drop on mobile"


def test_no_deficit_reports_uniform_drop(metric_row) -> None:
    impacts, cause = attribute_device_impact(
        [metric_row("MOBILE", clicks=200)], [metric_row("MOBILE", clicks=700)]
    )
    assert impacts["mobile"] == -100.0
    assert cause == "Uniform drop across devices"


def test_attribution_without_device_breakdown() -> None:
    result = build_drop_attribution(_anomaly("2024-03-06"))

    assert result.total_drop == -90
    assert result.primary_cause == "Traffic drop detected (device breakdown unavailable)"
    assert result.device_impact == {"mobile": 0.0, "desktop": 0.0, "tablet": 0.0}
    assert result.possible_algorithm_update == "March 2024 Core Update"
    assert len(result.matched_updates) == 1
