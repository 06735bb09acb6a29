from __future__ import annotations

import math
from collections import defaultdict
from typing import Sequence

from search_intelligence_mcp.core.matching import Matcher, safe_match
from search_intelligence_mcp.core.models import (
    BrandSegment,
    CannibalizationIssue,
    CompetingPage,
    LowCTROpportunity,
    LowHangingFruit,
    LostQuery,
    MetricRow,
    QuickWin,
    StrikingDistanceQuery,
)

# Conservative top-3 CTR used to estimate achievable clicks.
TARGET_CTR = 0.15

# Approximate web CTR by rounded position.
CTR_BENCHMARKS: dict[int, float] = {
    1: 0.30,
    2: 0.15,
    3: 0.10,
    4: 0.06,
    5: 0.04,
    6: 0.03,
    7: 0.02,
    8: 0.015,
    9: 0.01,
    10: 0.01,
}
LOW_CTR_RATIO = 0.6
LOST_RATIO = 0.2


def potential_clicks(impressions: int, clicks: int) -> int:
    return max(0, int(math.floor(impressions * TARGET_CTR + 0.5)) - clicks)


def benchmark_ctr(position: float) -> float:
    return CTR_BENCHMARKS.get(int(math.floor(position + 0.5)), 0.01)


def _top(items: list, limit: int | None) -> list:
    if limit is None:
        return items
    return items[: max(0, limit)]


def find_low_hanging_fruit(
    rows: Sequence[MetricRow],
    *,
    min_impressions: int = 100,
    min_position: float = 5,
    max_position: float = 20,
    limit: int | None = 50,
) -> list[LowHangingFruit]:
    """Queries on positions 5-20 with enough impressions to be worth pushing."""
    candidates = [
        LowHangingFruit(
            query=row.dimension(0),
            impressions=row.impressions,
            clicks=row.clicks,
            ctr=row.ctr,
            position=row.position,
            potential_clicks=potential_clicks(row.impressions, row.clicks),
        )
        for row in rows
        if min_position <= row.position <= max_position and row.impressions >= min_impressions
    ]
    candidates.sort(key=lambda c: c.potential_clicks, reverse=True)
    return _top(candidates, limit)


def detect_cannibalization(
    rows: Sequence[MetricRow],
    *,
    min_impressions: int = 50,
    max_position: float = 20,
    conflict_floor: float = 0.1,
    runner_up_ratio: float = 0.2,
    limit: int | None = 30,
) -> list[CannibalizationIssue]:
    """Queries split across several pages, keyed ``(query, page)``.

    Conflict is ``1 - sum(share^2)`` over click shares (impression shares when
    the query has no clicks): 0 means one page takes everything.
    """
    groups: dict[str, dict[str, CompetingPage]] = defaultdict(dict)
    for row in rows:
        if row.impressions < min_impressions or row.position >= max_position:
            continue
        query, page = row.dimension(0), row.dimension(1)
        existing = groups[query].get(page)
        if existing is not None:
            # Same page listed twice: keep the stronger row.
            if existing.clicks >= row.clicks:
                continue
        groups[query][page] = CompetingPage(
            page=page,
            clicks=row.clicks,
            impressions=row.impressions,
            position=row.position,
            ctr=row.ctr,
        )

    issues: list[CannibalizationIssue] = []
    for query, by_page in groups.items():
        if len(by_page) < 2:
            continue

        pages = sorted(by_page.values(), key=lambda p: p.clicks, reverse=True)
        total_clicks = sum(p.clicks for p in pages)
        total_impressions = sum(p.impressions for p in pages)

        if total_clicks > 0:
            shares = [p.clicks / total_clicks for p in pages]
        else:
            shares = [p.impressions / total_impressions for p in pages]
        conflict = 1 - sum(s * s for s in shares)

        leader, runner_up = pages[0], pages[1]
        runner_up_visible = runner_up.impressions > leader.impressions * runner_up_ratio
        if conflict > conflict_floor or runner_up_visible:
            issues.append(
                CannibalizationIssue(
                    query=query,
                    pages=tuple(pages),
                    total_clicks=total_clicks,
                    total_impressions=total_impressions,
                    click_share_conflict=round(conflict, 2),
                )
            )

    issues.sort(key=lambda i: i.total_clicks * i.click_share_conflict, reverse=True)
    return _top(issues, limit)


def find_low_ctr_opportunities(
    rows: Sequence[MetricRow],
    *,
    min_impressions: int = 500,
    limit: int | None = 50,
) -> list[LowCTROpportunity]:
    """Page-one rankings earning less than 60% of the benchmark CTR."""
    found: list[LowCTROpportunity] = []
    for row in rows:
        if row.impressions <= min_impressions or row.position > 10:
            continue
        benchmark = benchmark_ctr(row.position)
        if row.ctr >= benchmark * LOW_CTR_RATIO:
            continue
        found.append(
            LowCTROpportunity(
                query=row.dimension(0),
                page=row.dimension(1),
                position=row.position,
                impressions=row.impressions,
                clicks=row.clicks,
                ctr=row.ctr,
                benchmark_ctr=benchmark,
            )
        )
    found.sort(key=lambda o: o.impressions, reverse=True)
    return _top(found, limit)


def find_striking_distance(
    rows: Sequence[MetricRow],
    *,
    min_position: float = 8,
    max_position: float = 15,
    limit: int | None = 50,
) -> list[StrikingDistanceQuery]:
    found = [
        StrikingDistanceQuery(
            query=row.dimension(0),
            page=row.dimension(1),
            position=row.position,
            impressions=row.impressions,
            clicks=row.clicks,
            potential_clicks=potential_clicks(row.impressions, row.clicks),
        )
        for row in rows
        if min_position <= row.position <= max_position
    ]
    found.sort(key=lambda q: q.impressions, reverse=True)
    return _top(found, limit)


def find_quick_wins(
    rows: Sequence[MetricRow],
    *,
    min_impressions: int = 100,
    min_position: float = 11,
    max_position: float = 20,
    limit: int | None = 20,
) -> list[QuickWin]:
    """Page/query pairs on page two, keyed ``(page, query)``."""
    wins = [
        QuickWin(
            page=row.dimension(0),
            query=row.dimension(1),
            position=row.position,
            impressions=row.impressions,
            potential_clicks=potential_clicks(row.impressions, row.clicks),
        )
        for row in rows
        if min_position <= row.position <= max_position and row.impressions >= min_impressions
    ]
    wins.sort(key=lambda w: w.potential_clicks, reverse=True)
    return _top(wins, limit)


def find_lost_queries(
    current_rows: Sequence[MetricRow],
    previous_rows: Sequence[MetricRow],
    *,
    min_previous_clicks: int = 5,
    limit: int | None = 50,
) -> list[LostQuery]:
    """Keys that dropped to zero clicks or below 20% of the previous period."""
    current = {row.keys: row for row in current_rows}

    lost: list[LostQuery] = []
    for prev in previous_rows:
        if prev.clicks < min_previous_clicks:
            continue

        curr = current.get(prev.keys)
        current_clicks = curr.clicks if curr else 0
        if current_clicks > 0 and current_clicks / prev.clicks >= LOST_RATIO:
            continue

        lost.append(
            LostQuery(
                query=prev.dimension(0),
                page=prev.dimension(1),
                previous_clicks=prev.clicks,
                previous_impressions=prev.impressions,
                previous_position=prev.position,
                current_clicks=current_clicks,
                current_impressions=curr.impressions if curr else 0,
                current_position=curr.position if curr else 0.0,
                lost_clicks=prev.clicks - current_clicks,
            )
        )

    lost.sort(key=lambda q: q.lost_clicks, reverse=True)
    return _top(lost, limit)


def analyze_brand_vs_non_brand(
    rows: Sequence[MetricRow],
    brand_pattern: str,
    *,
    matcher: Matcher = safe_match,
) -> list[BrandSegment]:
    totals = {
        "Brand": {"clicks": 0, "impressions": 0, "weighted_position": 0.0, "count": 0},
        "Non-Brand": {"clicks": 0, "impressions": 0, "weighted_position": 0.0, "count": 0},
    }

    for row in rows:
        segment = "Brand" if matcher(brand_pattern, row.dimension(0)) else "Non-Brand"
        stats = totals[segment]
        stats["clicks"] += row.clicks
        stats["impressions"] += row.impressions
        stats["weighted_position"] += row.position * row.impressions
        stats["count"] += 1

    segments: list[BrandSegment] = []
    for name, stats in totals.items():
        impressions = stats["impressions"]
        segments.append(
            BrandSegment(
                segment=name,
                clicks=stats["clicks"],
                impressions=impressions,
                ctr=round(stats["clicks"] / impressions, 4) if impressions > 0 else 0.0,
                position=(
                    round(stats["weighted_position"] / impressions, 2) if impressions > 0 else 0.0
                ),
                query_count=stats["count"],
            )
        )
    return segments
