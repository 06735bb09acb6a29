from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import lru_cache

from search_intelligence_mcp.errors import InputError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise InputError(f"Invalid date {value!r}; expected YYYY-MM-DD.") from exc


def as_date(value: str | None, fallback: date) -> date:
    if not value:
        return fallback
    return parse_date(value)


@dataclass(frozen=True)
class Settings:
    enable_gsc: bool
    enable_bing: bool
    bing_api_key: str | None

    default_lookback_days: int
    data_delay_days: int
    default_row_limit: int

    cache_ttl_seconds: float
    health_check_concurrency: int
    request_timeout_seconds: float
    log_level: str


def default_settings() -> Settings:
    return Settings(
        enable_gsc=True,
        enable_bing=False,
        bing_api_key=None,
        default_lookback_days=28,
        data_delay_days=3,
        default_row_limit=5000,
        cache_ttl_seconds=300.0,
        health_check_concurrency=5,
        request_timeout_seconds=30.0,
        log_level="INFO",
    )


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    defaults = default_settings()
    bing_api_key = os.getenv("BING_API_KEY") or None
    return Settings(
        enable_gsc=_parse_bool(os.getenv("ENABLE_GSC"), defaults.enable_gsc),
        enable_bing=_parse_bool(os.getenv("ENABLE_BING"), bing_api_key is not None),
        bing_api_key=bing_api_key,
        default_lookback_days=_parse_int(
            os.getenv("DEFAULT_LOOKBACK_DAYS"), defaults.default_lookback_days
        ),
        data_delay_days=_parse_int(os.getenv("DATA_DELAY_DAYS"), defaults.data_delay_days),
        default_row_limit=_parse_int(
            os.getenv("DEFAULT_ROW_LIMIT"), defaults.default_row_limit
        ),
        cache_ttl_seconds=_parse_float(
            os.getenv("CACHE_TTL_SECONDS"), defaults.cache_ttl_seconds
        ),
        health_check_concurrency=max(
            1,
            _parse_int(
                os.getenv("HEALTH_CHECK_CONCURRENCY"), defaults.health_check_concurrency
            ),
        ),
        request_timeout_seconds=_parse_float(
            os.getenv("REQUEST_TIMEOUT_SECONDS"), defaults.request_timeout_seconds
        ),
        log_level=(os.getenv("LOG_LEVEL") or defaults.log_level).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stderr handler to the package logger.

    Calling it again only updates the level; handlers are never duplicated.
    """
    package_logger = logging.getLogger("search_intelligence_mcp")
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.NullHandler)
        for h in package_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        package_logger.addHandler(handler)


def reporting_end(today: date, delay_days: int) -> date:
    """Last day with reliable data; the backends lag by a few days."""
    return today - timedelta(days=delay_days)


def reporting_window(today: date, days: int, delay_days: int) -> tuple[str, str]:
    if days < 1:
        raise InputError("days must be at least 1.")
    end = reporting_end(today, delay_days)
    start = end - timedelta(days=days - 1)
    return start.isoformat(), end.isoformat()


def current_and_previous_ranges(
    start_date: str | None,
    end_date: str | None,
    lookback_days: int,
    *,
    today: date | None = None,
) -> dict[str, tuple[str, str]]:
    today = today or date.today()
    end = as_date(end_date, today - timedelta(days=1))

    if start_date:
        start = parse_date(start_date)
    else:
        start = end - timedelta(days=lookback_days - 1)

    if start > end:
        raise InputError(f"start_date {start} is after end_date {end}.")

    span_days = (end - start).days + 1
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=span_days - 1)

    return {
        "current": (start.isoformat(), end.isoformat()),
        "previous": (prev_start.isoformat(), prev_end.isoformat()),
    }
