from __future__ import annotations


class SearchIntelligenceError(Exception):
    """Base class for every error raised by this package."""


class InputError(SearchIntelligenceError, ValueError):
    """Malformed caller input: bad dates, unknown dimensions, invalid limits."""


class SourceError(SearchIntelligenceError):
    """A metric source could not produce data."""

    def __init__(self, source: str, message: str, *, status: int | None = None) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status
        self.detail = message


class AuthenticationError(SourceError):
    pass


class PermissionDeniedError(SourceError):
    pass


class NotFoundError(SourceError):
    pass


class QuotaExceededError(SourceError):
    pass


_STATUS_MESSAGES: dict[int, tuple[type[SourceError], str]] = {
    401: (AuthenticationError, "Authentication failed. Check the configured credentials."),
    403: (
        PermissionDeniedError,
        "Permission denied. Ensure the account has access to this property.",
    ),
    404: (NotFoundError, "Resource not found. Verify the site URL or resource exists."),
    429: (QuotaExceededError, "Rate limit exceeded. Wait a moment and try again."),
}


def source_error_from_status(source: str, status: int | None, detail: str = "") -> SourceError:
    if status in _STATUS_MESSAGES:
        error_type, message = _STATUS_MESSAGES[status]
        if detail:
            message = f"{message} ({detail})"
        return error_type(source, message, status=status)
    return SourceError(source, detail or f"request failed with status {status}", status=status)
