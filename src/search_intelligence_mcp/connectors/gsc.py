from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import google_auth_httplib2
import httplib2
from google.auth.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from search_intelligence_mcp.auth import get_google_credentials
from search_intelligence_mcp.core.models import AnalyticsQuery, MetricRow, SitemapInfo
from search_intelligence_mcp.core.normalization import row_from_gsc, to_int
from search_intelligence_mcp.errors import SourceError, source_error_from_status

logger = logging.getLogger(__name__)


class GSCConnector:
    """Google Search Console v1 as a metric source.

    The discovery client is blocking, so every ``execute()`` runs on a worker
    thread with its own authorized HTTP object (httplib2 is not thread-safe).
    """

    # Sitemap submission and deletion need the read-write scope.
    SCOPES = ("https://www.googleapis.com/auth/webmasters",)

    name = "gsc"
    supports_device_breakdown = True

    def __init__(
        self,
        *,
        service: Any = None,
        credentials: Credentials | None = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._timeout = timeout
        if service is None:
            credentials = credentials or get_google_credentials(self.SCOPES)
            service = build(
                "searchconsole",
                "v1",
                credentials=credentials,
                cache_discovery=False,
            )
        self._credentials = credentials
        self._service = service

    def _run(self, request: Any) -> dict[str, Any]:
        try:
            if self._credentials is None:
                return request.execute()
            http = google_auth_httplib2.AuthorizedHttp(
                self._credentials, http=httplib2.Http(timeout=self._timeout)
            )
            return request.execute(http=http)
        except HttpError as exc:
            raise source_error_from_status(
                self.name, exc.resp.status, getattr(exc, "reason", "") or ""
            ) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise SourceError(self.name, f"request failed: {exc}") from exc

    async def _execute(self, request: Any) -> dict[str, Any]:
        return await asyncio.to_thread(self._run, request)

    async def list_sites(self) -> list[str]:
        response = await self._execute(self._service.sites().list())
        return [entry["siteUrl"] for entry in response.get("siteEntry", []) if entry.get("siteUrl")]

    async def get_permission_level(self, site_url: str) -> str:
        response = await self._execute(self._service.sites().get(siteUrl=site_url))
        return response.get("permissionLevel") or "unknown"

    async def list_sitemaps(self, site_url: str) -> list[SitemapInfo]:
        response = await self._execute(self._service.sitemaps().list(siteUrl=site_url))
        return [
            SitemapInfo(
                path=item.get("path") or "unknown",
                type=item.get("type"),
                is_pending=bool(item.get("isPending", False)),
                errors=to_int(item.get("errors")),
                warnings=to_int(item.get("warnings")),
                last_downloaded=item.get("lastDownloaded"),
            )
            for item in response.get("sitemap", [])
        ]

    async def get_sitemap(self, site_url: str, feedpath: str) -> dict[str, Any]:
        request = self._service.sitemaps().get(siteUrl=site_url, feedpath=feedpath)
        return await self._execute(request)

    async def submit_sitemap(self, site_url: str, feedpath: str) -> None:
        await self._execute(self._service.sitemaps().submit(siteUrl=site_url, feedpath=feedpath))
        logger.info("Submitted sitemap %s for %s", feedpath, site_url)

    async def delete_sitemap(self, site_url: str, feedpath: str) -> None:
        await self._execute(self._service.sitemaps().delete(siteUrl=site_url, feedpath=feedpath))
        logger.info("Deleted sitemap %s for %s", feedpath, site_url)

    async def inspect_url(
        self, site_url: str, inspection_url: str, *, language_code: str = "en-US"
    ) -> dict[str, Any]:
        """Index status of one URL as Google sees it (URL Inspection API)."""
        body = {
            "inspectionUrl": inspection_url,
            "siteUrl": site_url,
            "languageCode": language_code,
        }
        response = await self._execute(self._service.urlInspection().index().inspect(body=body))
        return response.get("inspectionResult") or {}

    async def count_crawl_issues(self, site_url: str) -> int:
        # The Search Console API has no crawl-error report.
        return 0

    async def search_analytics(
        self,
        site_url: str,
        start_date: str,
        end_date: str,
        *,
        dimensions: Sequence[str] | None = None,
        row_limit: int = 25000,
        start_row: int = 0,
        search_type: str = "web",
        data_state: str | None = None,
        aggregation_type: str | None = None,
        dimension_filter_groups: Sequence[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "startDate": start_date,
            "endDate": end_date,
            "rowLimit": row_limit,
            "startRow": start_row,
            "type": search_type,
        }

        if dimensions:
            body["dimensions"] = list(dimensions)
        if data_state:
            body["dataState"] = data_state
        if aggregation_type:
            body["aggregationType"] = aggregation_type
        if dimension_filter_groups:
            body["dimensionFilterGroups"] = list(dimension_filter_groups)

        request = self._service.searchanalytics().query(siteUrl=site_url, body=body)
        return await self._execute(request)

    async def fetch_metric_rows(self, query: AnalyticsQuery) -> list[MetricRow]:
        groups = None
        if query.filters:
            groups = [{"filters": [f.as_api() for f in query.filters]}]

        response = await self.search_analytics(
            query.site_url,
            query.start_date,
            query.end_date,
            dimensions=query.dimensions,
            row_limit=query.row_limit,
            start_row=query.start_row,
            search_type=query.search_type,
            dimension_filter_groups=groups,
        )
        rows = [row_from_gsc(raw) for raw in response.get("rows", [])]
        logger.debug("Fetched %d rows for %s", len(rows), query.site_url)
        return rows
