from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from search_intelligence_mcp.core.matching import safe_match
from search_intelligence_mcp.core.models import (
    CannibalizationIssue,
    LowHangingFruit,
    QuickWin,
    Recommendation,
)
from search_intelligence_mcp.core.normalization import percent_change

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True)
class RankingBucket:
    position: float
    bucket: str


@dataclass(frozen=True)
class TrafficDelta:
    current: float
    previous: float
    absolute_change: float
    percent_change: float
    status: str


@dataclass(frozen=True)
class BrandQueryResult:
    query: str
    is_brand: bool
    matched_pattern: str | None = None


@dataclass(frozen=True)
class PageMetrics:
    position: float
    impressions: float
    clicks: float


@dataclass(frozen=True)
class CannibalizationCheck:
    query: str
    is_cannibalized: bool
    overlap_score: float
    recommendation: str


def ranking_bucket(position: float) -> RankingBucket:
    if position <= 0:
        bucket = "Unranked"
    elif position <= 3:
        bucket = "Top 3"
    elif position <= 10:
        bucket = "Page 1 (4-10)"
    elif position <= 20:
        bucket = "Page 2 (11-20)"
    else:
        bucket = "Page 3+"
    return RankingBucket(position=position, bucket=bucket)


def traffic_delta(current: float, previous: float) -> TrafficDelta:
    if previous == 0:
        status = "new" if current > 0 else "unchanged"
    elif current == 0:
        status = "lost"
    elif current > previous:
        status = "increased"
    elif current < previous:
        status = "decreased"
    else:
        status = "unchanged"

    return TrafficDelta(
        current=current,
        previous=previous,
        absolute_change=current - previous,
        percent_change=round(percent_change(current, previous)),
        status=status,
    )


def is_brand_query(query: str, brand_pattern: str) -> BrandQueryResult:
    matched = safe_match(brand_pattern, query)
    return BrandQueryResult(
        query=query,
        is_brand=matched,
        matched_pattern=brand_pattern if matched else None,
    )


def cannibalization_check(
    query: str, page_a: PageMetrics, page_b: PageMetrics, *, threshold: float = 0.3
) -> CannibalizationCheck:
    """Overlap of two pages for one query: position proximity x impression balance."""
    position_score = 1 / (1 + abs(page_a.position - page_b.position) * 0.5)

    total_impressions = page_a.impressions + page_b.impressions
    if total_impressions > 0:
        share_a = page_a.impressions / total_impressions
        share_b = page_b.impressions / total_impressions
        balance_score = 1 - abs(share_a - share_b)
    else:
        balance_score = 0.0

    overlap = round(position_score * balance_score, 2)
    cannibalized = overlap > threshold

    recommendation = "No action needed."
    if cannibalized:
        if page_a.clicks > page_b.clicks * 2:
            recommendation = "Consolidate to page A (stronger performer)."
        elif page_b.clicks > page_a.clicks * 2:
            recommendation = "Consolidate to page B (stronger performer)."
        else:
            recommendation = "Review content intent. Pages are competing closely."

    return CannibalizationCheck(
        query=query,
        is_cannibalized=cannibalized,
        overlap_score=overlap,
        recommendation=recommendation,
    )


def synthesize_recommendations(
    low_hanging_fruit: Sequence[LowHangingFruit],
    cannibalization: Sequence[CannibalizationIssue],
    quick_wins: Sequence[QuickWin],
) -> list[Recommendation]:
    recommendations: list[Recommendation] = []

    if low_hanging_fruit:
        total_potential = sum(item.potential_clicks for item in low_hanging_fruit)
        recommendations.append(
            Recommendation(
                type="opportunity",
                category="Rankings",
                title=f"{len(low_hanging_fruit)} keywords with ranking potential",
                description=(
                    "Keywords ranking at positions 5-20 with high impressions. Moving "
                    f"these into the top 3 could bring ~{total_potential} additional clicks."
                ),
                priority="high",
                data={"top_keywords": [item.query for item in low_hanging_fruit[:5]]},
            )
        )

    if cannibalization:
        recommendations.append(
            Recommendation(
                type="warning",
                category="Content",
                title=f"{len(cannibalization)} keyword cannibalization issues",
                description=(
                    "Multiple pages compete for the same keywords, diluting ranking "
                    "potential. Consider consolidating content."
                ),
                priority="medium",
                data={"top_issues": [issue.query for issue in cannibalization[:3]]},
            )
        )

    if quick_wins:
        pages = list(dict.fromkeys(win.page for win in quick_wins[:5]))
        recommendations.append(
            Recommendation(
                type="opportunity",
                category="Quick Wins",
                title=f"{len(quick_wins)} pages close to page 1",
                description=(
                    "These pages have queries ranking on page 2 (positions 11-20). "
                    "Small improvements could push them to page 1."
                ),
                priority="high",
                data={"pages": pages},
            )
        )

    recommendations.sort(key=lambda r: PRIORITY_ORDER[r.priority])
    return recommendations
