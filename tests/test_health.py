from __future__ import annotations

from search_intelligence_mcp.core.engine import compare_summaries
from search_intelligence_mcp.core.health import (
    evaluate_site_health,
    failed_report,
    sort_reports,
    summarize_sitemaps,
)
from search_intelligence_mcp.core.models import Anomaly, PerformanceSummary, SitemapInfo

SITE = "https://example.com/"
SITEMAP = SitemapInfo(path="https://example.com/sitemap.xml")


def _comparison(clicks, impressions=1000, position=5.0, previous=(100, 1000, 5.0)):
    current = PerformanceSummary("2024-06-11", "2024-06-17", clicks, impressions, 0.1, position)
    prev_clicks, prev_impressions, prev_position = previous
    before = PerformanceSummary(
        "2024-06-04", "2024-06-10", prev_clicks, prev_impressions, 0.1, prev_position
    )
    return compare_summaries(current, before)


def test_steady_site_is_healthy() -> None:
    report = evaluate_site_health(
        SITE, comparison=_comparison(100), sitemaps=[SITEMAP], anomalies=[]
    )
    assert report.status == "healthy"
    assert report.issues == ()
    assert report.sitemaps.total == 1


def test_large_click_drop_is_critical() -> None:
    report = evaluate_site_health(
        SITE, comparison=_comparison(60), sitemaps=[SITEMAP], anomalies=[]
    )
    assert report.status == "critical"
    assert report.issues == ("Critical traffic drop: clicks down 40.0% week-over-week",)


def test_moderate_decline_and_position_loss_warn() -> None:
    report = evaluate_site_health(
        SITE,
        comparison=_comparison(80, impressions=820, position=9.0),
        sitemaps=[SITEMAP],
        anomalies=[],
    )
    assert report.status == "warning"
    assert report.issues == (
        "Traffic declining: clicks down 20.0% week-over-week",
        "Visibility declining: impressions down 18.0% week-over-week",
        "Average position worsened by 4.0 positions",
    )


def test_no_traffic_is_critical() -> None:
    report = evaluate_site_health(
        SITE, comparison=_comparison(0, impressions=0), sitemaps=[SITEMAP], anomalies=[]
    )
    assert report.status == "critical"
    assert report.issues[-1].startswith("No traffic data for the current period")


def test_sitemap_anomaly_and_crawl_issues_warn() -> None:
    broken = SitemapInfo(path="https://example.com/news.xml", errors=2, warnings=1)
    drop = Anomaly("2024-06-15", "clicks", "drop", 10, 100, -90.0)
    spike = Anomaly("2024-06-16", "clicks", "spike", 300, 100, 200.0)

    report = evaluate_site_health(
        SITE,
        comparison=_comparison(100),
        sitemaps=[SITEMAP, broken],
        anomalies=[drop, spike],
        crawl_issues=4,
        permission_level="siteOwner",
    )

    assert report.status == "warning"
    assert report.permission_level == "siteOwner"
    assert report.issues == (
        "1 sitemap(s) have errors",
        "1 sitemap(s) have warnings",
        "1 traffic anomaly drop(s) detected in the last 14 days",
        "4 crawl issue(s) detected",
    )


def test_missing_sitemaps_only_reported_when_listing_worked() -> None:
    missing = evaluate_site_health(SITE, comparison=_comparison(100), sitemaps=[], anomalies=[])
    assert missing.status == "warning"
    assert missing.issues[0].startswith("No sitemaps submitted")

    unknown = evaluate_site_health(
        SITE,
        comparison=_comparison(100),
        sitemaps=[],
        anomalies=[],
        sitemaps_available=False,
    )
    assert unknown.status == "healthy"


def test_unavailable_comparison_degrades_to_warning() -> None:
    report = evaluate_site_health(SITE, comparison=None, sitemaps=[SITEMAP], anomalies=[])
    assert report.status == "warning"
    assert report.performance is None
    assert report.issues == ("Performance data unavailable for the week-over-week comparison",)


def test_failed_report_and_ordering() -> None:
    healthy = evaluate_site_health(
        "https://a.example/", comparison=_comparison(100), sitemaps=[SITEMAP], anomalies=[]
    )
    warning = evaluate_site_health(
        "https://b.example/", comparison=None, sitemaps=[SITEMAP], anomalies=[]
    )
    failed = failed_report("https://c.example/", RuntimeError("boom"))

    assert failed.status == "critical"
    assert failed.issues == ("Health check failed: boom",)
    assert [r.site_url for r in sort_reports([healthy, warning, failed])] == [
        "https://c.example/",
        "https://b.example/",
        "https://a.example/",
    ]


def test_summarize_sitemaps_counts() -> None:
    summary = summarize_sitemaps(
        [SITEMAP, SitemapInfo(path="x", errors=1), SitemapInfo(path="y", errors=3, warnings=2)]
    )
    assert (summary.total, summary.with_errors, summary.with_warnings) == (3, 2, 1)


def test_compare_summaries_changes() -> None:
    comparison = _comparison(150, impressions=1200, position=4.0)
    changes = comparison.changes
    assert changes.clicks == 50
    assert changes.clicks_percent == 50.0
    assert changes.impressions_percent == 20.0
    assert changes.position == -1.0
    assert changes.position_percent == -20.0
    assert changes.ctr == 0.0
