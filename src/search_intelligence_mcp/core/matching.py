from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Callable, Sequence

import re2

logger = logging.getLogger(__name__)

Matcher = Callable[[str, str], bool]


@lru_cache(maxsize=256)
def _compile(pattern: str, ignore_case: bool) -> Any:
    # RE2 runs in linear time and rejects backreferences and lookaround.
    options = re2.Options()
    options.case_sensitive = not ignore_case
    try:
        return re2.compile(pattern, options)
    except (re2.error, TypeError) as exc:
        logger.warning("Invalid pattern %r: %s", pattern, exc)
        return None


def safe_match(pattern: str, text: str, *, ignore_case: bool = True) -> bool:
    """Search ``text`` for ``pattern``; an invalid pattern matches nothing."""
    compiled = _compile(pattern, ignore_case)
    if compiled is None:
        return False
    return compiled.search(text or "") is not None


def safe_match_batch(
    pattern: str, texts: Sequence[str], *, ignore_case: bool = True
) -> list[bool]:
    if not texts:
        return []
    compiled = _compile(pattern, ignore_case)
    if compiled is None:
        return [False] * len(texts)
    return [compiled.search(t or "") is not None for t in texts]
