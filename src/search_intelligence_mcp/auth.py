from __future__ import annotations

import os
from typing import Any, Sequence

from google.auth.credentials import Credentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials

from search_intelligence_mcp.errors import AuthenticationError

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _inline_service_account_info() -> dict[str, Any] | None:
    client_email = os.getenv("GOOGLE_CLIENT_EMAIL")
    private_key = os.getenv("GOOGLE_PRIVATE_KEY")
    if not client_email or not private_key:
        return None
    return {
        "type": "service_account",
        "client_email": client_email,
        # Keys pasted into .env files usually carry literal "\n" sequences.
        "private_key": private_key.replace("\\n", "\n"),
        "token_uri": GOOGLE_TOKEN_URI,
    }


def _service_account_credentials(scopes: Sequence[str]) -> Credentials:
    creds_path = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE") or os.getenv(
        "GOOGLE_APPLICATION_CREDENTIALS"
    )
    try:
        if creds_path:
            creds: Credentials = ServiceAccountCredentials.from_service_account_file(
                creds_path, scopes=list(scopes)
            )
        else:
            info = _inline_service_account_info()
            if info is None:
                raise AuthenticationError(
                    "gsc",
                    "Service account auth is required. Set GOOGLE_SERVICE_ACCOUNT_FILE "
                    "(or GOOGLE_APPLICATION_CREDENTIALS) to your service account JSON path, "
                    "or GOOGLE_CLIENT_EMAIL and GOOGLE_PRIVATE_KEY.",
                )
            creds = ServiceAccountCredentials.from_service_account_info(
                info, scopes=list(scopes)
            )
    except (OSError, ValueError) as exc:
        raise AuthenticationError("gsc", f"Could not load service account: {exc}") from exc

    subject = os.getenv("GOOGLE_IMPERSONATE_USER")
    if subject and hasattr(creds, "with_subject"):
        creds = creds.with_subject(subject)

    return creds


def get_google_credentials(scopes: Sequence[str]) -> Credentials:
    return _service_account_credentials(scopes)


def get_bing_api_key(configured: str | None = None) -> str:
    api_key = configured or os.getenv("BING_API_KEY")
    if not api_key:
        raise AuthenticationError(
            "bing", "Bing Webmaster API key is required. Set BING_API_KEY."
        )
    return api_key
