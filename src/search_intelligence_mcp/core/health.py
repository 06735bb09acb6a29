from __future__ import annotations

from typing import Sequence

from search_intelligence_mcp.core.models import (
    Anomaly,
    HealthReport,
    PeriodComparison,
    SitemapInfo,
    SitemapSummary,
)

STATUS_ORDER = {"critical": 0, "warning": 1, "healthy": 2}

CRITICAL_DROP_PERCENT = -30.0
WARNING_DROP_PERCENT = -15.0
POSITION_WORSENED_BY = 3.0


def summarize_sitemaps(sitemaps: Sequence[SitemapInfo]) -> SitemapSummary:
    return SitemapSummary(
        total=len(sitemaps),
        with_errors=sum(1 for s in sitemaps if s.errors > 0),
        with_warnings=sum(1 for s in sitemaps if s.warnings > 0),
        details=tuple(sitemaps),
    )


def _performance_issues(comparison: PeriodComparison) -> tuple[list[str], bool]:
    issues: list[str] = []
    critical = False
    changes = comparison.changes

    if changes.clicks_percent <= CRITICAL_DROP_PERCENT:
        critical = True
        issues.append(
            f"Critical traffic drop: clicks down {abs(changes.clicks_percent):.1f}% week-over-week"
        )
    elif changes.clicks_percent <= WARNING_DROP_PERCENT:
        issues.append(
            f"Traffic declining: clicks down {abs(changes.clicks_percent):.1f}% week-over-week"
        )

    if changes.impressions_percent <= CRITICAL_DROP_PERCENT:
        critical = True
        issues.append(
            "Critical visibility drop: impressions down "
            f"{abs(changes.impressions_percent):.1f}% week-over-week"
        )
    elif changes.impressions_percent <= WARNING_DROP_PERCENT:
        issues.append(
            "Visibility declining: impressions down "
            f"{abs(changes.impressions_percent):.1f}% week-over-week"
        )

    if changes.position > POSITION_WORSENED_BY:
        issues.append(f"Average position worsened by {changes.position:.1f} positions")

    if comparison.current.clicks == 0 and comparison.current.impressions == 0:
        critical = True
        issues.append(
            "No traffic data for the current period; the site may not be receiving search traffic"
        )

    return issues, critical


def evaluate_site_health(
    site_url: str,
    *,
    comparison: PeriodComparison | None,
    sitemaps: Sequence[SitemapInfo],
    anomalies: Sequence[Anomaly],
    crawl_issues: int = 0,
    permission_level: str = "unknown",
    sitemaps_available: bool = True,
) -> HealthReport:
    """Turn the collected signals into a status and ordered issue list.

    Critical wins over warning, warning over healthy. ``comparison`` is
    ``None`` when performance data could not be fetched.
    """
    issues: list[str] = []
    critical = False

    if comparison is None:
        issues.append("Performance data unavailable for the week-over-week comparison")
    else:
        performance_issues, critical = _performance_issues(comparison)
        issues.extend(performance_issues)

    summary = summarize_sitemaps(sitemaps)
    if sitemaps_available and summary.total == 0:
        issues.append("No sitemaps submitted; consider submitting a sitemap for better crawling")
    if summary.with_errors:
        issues.append(f"{summary.with_errors} sitemap(s) have errors")
    if summary.with_warnings:
        issues.append(f"{summary.with_warnings} sitemap(s) have warnings")

    drops = [a for a in anomalies if a.kind == "drop"]
    if drops:
        issues.append(f"{len(drops)} traffic anomaly drop(s) detected in the last 14 days")

    if crawl_issues > 0:
        issues.append(f"{crawl_issues} crawl issue(s) detected")

    if critical:
        status = "critical"
    elif issues:
        status = "warning"
    else:
        status = "healthy"

    return HealthReport(
        site_url=site_url,
        status=status,
        permission_level=permission_level,
        performance=comparison,
        sitemaps=summary,
        anomalies=tuple(anomalies),
        crawl_issues=crawl_issues,
        issues=tuple(issues),
    )


def failed_report(site_url: str, error: Exception) -> HealthReport:
    return HealthReport(
        site_url=site_url,
        status="critical",
        permission_level="unknown",
        performance=None,
        sitemaps=summarize_sitemaps(()),
        anomalies=(),
        crawl_issues=0,
        issues=(f"Health check failed: {error}",),
    )


def sort_reports(reports: Sequence[HealthReport]) -> list[HealthReport]:
    return sorted(reports, key=lambda r: STATUS_ORDER[r.status])
