from __future__ import annotations

import pytest

from search_intelligence_mcp.core.models import (
    CannibalizationIssue,
    LowHangingFruit,
    QuickWin,
)
from search_intelligence_mcp.core.scoring import (
    PageMetrics,
    cannibalization_check,
    is_brand_query,
    ranking_bucket,
    synthesize_recommendations,
    traffic_delta,
)


@pytest.mark.parametrize(
    ("position", "bucket"),
    [
        (0, "Unranked"),
        (2.5, "Top 3"),
        (3, "Top 3"),
        (7, "Page 1 (4-10)"),
        (15, "Page 2 (11-20)"),
        (25, "Page 3+"),
    ],
)
def test_ranking_bucket(position, bucket) -> None:
    assert ranking_bucket(position).bucket == bucket


@pytest.mark.parametrize(
    ("current", "previous", "status", "percent"),
    [
        (150, 100, "increased", 50),
        (80, 100, "decreased", -20),
        (0, 100, "lost", -100),
        (10, 0, "new", 100),
        (0, 0, "unchanged", 0),
        (5, 5, "unchanged", 0),
    ],
)
def test_traffic_delta(current, previous, status, percent) -> None:
    delta = traffic_delta(current, previous)
    assert delta.status == status
    assert delta.percent_change == percent
    assert delta.absolute_change == current - previous


def test_is_brand_query() -> None:
    assert is_brand_query("ACME pricing", "acme|acme corp").matched_pattern == "acme|acme corp"
    miss = is_brand_query("running shoes", "acme")
    assert miss.is_brand is False
    assert miss.matched_pattern is None
    assert is_brand_query("acme", "[").is_brand is False


def test_cannibalization_check_recommends_stronger_page() -> None:
    result = cannibalization_check(
        "shoes", PageMetrics(5, 1000, 100), PageMetrics(5, 1000, 10)
    )
    assert result.overlap_score == 1.0
    assert result.is_cannibalized is True
    assert result.recommendation == "Consolidate to page A (stronger performer)."


def test_cannibalization_check_close_competition() -> None:
    result = cannibalization_check("shoes", PageMetrics(4, 500, 40), PageMetrics(5, 500, 35))
    assert result.is_cannibalized is True
    assert result.recommendation == "Review content intent. Pages are competing closely."


def test_distant_pages_are_not_cannibalized() -> None:
    result = cannibalization_check("shoes", PageMetrics(1, 1000, 300), PageMetrics(30, 1000, 1))
    assert result.is_cannibalized is False
    assert result.recommendation == "No action needed."


def test_recommendations_sorted_by_priority() -> None:
    lhf = [LowHangingFruit("shoes", 1000, 20, 0.02, 7, 130)]
    issues = [CannibalizationIssue("hats", (), 10, 100, 0.5)]
    wins = [QuickWin("/blog", "how to", 12, 400, 58), QuickWin("/blog", "why", 14, 300, 40)]

    recommendations = synthesize_recommendations(lhf, issues, wins)

    assert [r.priority for r in recommendations] == ["high", "high", "medium"]
    assert [r.category for r in recommendations] == ["Rankings", "Quick Wins", "Content"]
    assert "~130 additional clicks" in recommendations[0].description
    assert recommendations[1].data == {"pages": ["/blog"]}
    assert synthesize_recommendations([], [], []) == []
