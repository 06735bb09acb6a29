from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from search_intelligence_mcp.errors import InputError, SourceError, source_error_from_status

logger = logging.getLogger(__name__)

INDEXNOW_URL = "https://api.indexnow.org/indexnow"


async def submit_index_now(
    host: str,
    key: str,
    urls: Sequence[str],
    *,
    key_location: str | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
    endpoint: str = INDEXNOW_URL,
) -> int:
    """Push changed URLs to every IndexNow search engine; returns the URL count.

    The protocol needs no account: ownership is proven by serving ``key`` at
    ``https://<host>/<key>.txt`` or at ``key_location``.
    """
    url_list = [url for url in urls if url]
    if not host or not key:
        raise InputError("IndexNow needs both a host and a key.")
    if not url_list:
        raise InputError("At least one URL is required.")

    payload: dict[str, Any] = {"host": host, "key": key, "urlList": url_list}
    if key_location:
        payload["keyLocation"] = key_location

    try:
        if client is not None:
            response = await client.post(endpoint, json=payload, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.post(endpoint, json=payload)
    except httpx.HTTPError as exc:
        raise SourceError("indexnow", f"submission failed: {exc}") from exc

    if response.status_code >= 400:
        raise source_error_from_status("indexnow", response.status_code, response.text[:200])

    logger.info("Submitted %d URL(s) to IndexNow for %s", len(url_list), host)
    return len(url_list)
