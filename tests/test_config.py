from __future__ import annotations

import logging
from datetime import date

import pytest

from search_intelligence_mcp.config import (
    configure_logging,
    current_and_previous_ranges,
    load_settings,
    reporting_window,
)
from search_intelligence_mcp.errors import (
    AuthenticationError,
    InputError,
    PermissionDeniedError,
    QuotaExceededError,
    SourceError,
    source_error_from_status,
)


@pytest.fixture
def clean_settings(monkeypatch):
    for name in (
        "BING_API_KEY",
        "ENABLE_GSC",
        "ENABLE_BING",
        "CACHE_TTL_SECONDS",
        "HEALTH_CHECK_CONCURRENCY",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    load_settings.cache_clear()
    yield monkeypatch
    load_settings.cache_clear()


def test_settings_defaults(clean_settings) -> None:
    settings = load_settings()
    assert settings.enable_gsc is True
    assert settings.enable_bing is False
    assert settings.cache_ttl_seconds == 300.0
    assert settings.health_check_concurrency == 5
    assert settings.log_level == "INFO"


def test_settings_from_environment(clean_settings) -> None:
    clean_settings.setenv("BING_API_KEY", "secret")
    clean_settings.setenv("CACHE_TTL_SECONDS", "60")
    clean_settings.setenv("HEALTH_CHECK_CONCURRENCY", "0")
    clean_settings.setenv("LOG_LEVEL", "debug")

    settings = load_settings()

    assert settings.enable_bing is True
    assert settings.bing_api_key == "secret"
    assert settings.cache_ttl_seconds == 60.0
    assert settings.health_check_concurrency == 1
    assert settings.log_level == "DEBUG"


def test_reporting_window_ends_after_data_delay() -> None:
    assert reporting_window(date(2024, 6, 20), 7, 3) == ("2024-06-11", "2024-06-17")
    with pytest.raises(InputError):
        reporting_window(date(2024, 6, 20), 0, 3)


def test_previous_range_is_adjacent_and_equal_length() -> None:
    ranges = current_and_previous_ranges("2024-03-01", "2024-03-10", 28)
    assert ranges["current"] == ("2024-03-01", "2024-03-10")
    assert ranges["previous"] == ("2024-02-20", "2024-02-29")

    defaulted = current_and_previous_ranges(None, None, 7, today=date(2024, 1, 15))
    assert defaulted["current"] == ("2024-01-08", "2024-01-14")

    with pytest.raises(InputError):
        current_and_previous_ranges("2024-03-10", "2024-03-01", 7)


def test_configure_logging_is_idempotent() -> None:
    package_logger = logging.getLogger("search_intelligence_mcp")
    before = list(package_logger.handlers)
    try:
        configure_logging("DEBUG")
        configure_logging("WARNING")
        added = [h for h in package_logger.handlers if h not in before]
        assert len(added) <= 1
        assert package_logger.level == logging.WARNING
    finally:
        for handler in package_logger.handlers[:]:
            if handler not in before:
                package_logger.removeHandler(handler)


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (401, AuthenticationError),
        (403, PermissionDeniedError),
        (429, QuotaExceededError),
    ],
)
def test_status_codes_map_to_error_types(status, error_type) -> None:
    error = source_error_from_status("gsc", status, "detail")
    assert isinstance(error, error_type)
    assert error.status == status
    assert str(error).startswith("gsc: ")
    assert "(detail)" in str(error)


def test_unknown_status_keeps_detail() -> None:
    error = source_error_from_status("bing", 500, "boom")
    assert type(error) is SourceError
    assert str(error) == "bing: boom"
