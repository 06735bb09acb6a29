from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from search_intelligence_mcp.errors import InputError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Unit = Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class UnitResult(Generic[T]):
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded(units: Sequence[Unit[T]], max_concurrency: int) -> list[UnitResult[T]]:
    """Run ``units`` with at most ``max_concurrency`` executing at once.

    Units are factories so nothing starts before a slot is free. Results come
    back in input order; a failing unit fills its own slot with the error and
    leaves its siblings running.
    """
    if max_concurrency < 1:
        raise InputError("max_concurrency must be at least 1.")
    if not units:
        return []

    semaphore = asyncio.Semaphore(max_concurrency)

    async def _run(index: int, unit: Unit[T]) -> UnitResult[T]:
        async with semaphore:
            try:
                value = await unit()
            except Exception as exc:
                logger.warning("Unit %d of %d failed: %s", index + 1, len(units), exc)
                return UnitResult(error=exc)
            return UnitResult(value=value)

    return list(await asyncio.gather(*(_run(i, u) for i, u in enumerate(units))))
