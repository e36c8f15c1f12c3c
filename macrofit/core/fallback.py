"""Retry-and-advance loop shared by every multi-source lookup.

A source exposes ``name`` and ``try_fetch(query) -> (results, exhausted)``:

* ``(list, False)``: the source answered (the list may be empty).
* ``(None, True)``: the source cannot serve this query (not configured,
  permanent error); move on immediately.
* raising :class:`TransientFetchError`: rate limit or gateway timeout; retry the
  same source with exponential backoff and jitter, then move on.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.5
DEFAULT_MAX_JITTER = 0.5


class TransientFetchError(RuntimeError):
    """A retryable upstream failure (HTTP 429, 504, timeouts)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class Source(Protocol):
    name: str

    def try_fetch(self, query: Any) -> Tuple[Optional[List[Dict[str, Any]]], bool]:
        ...


@dataclass
class ChainResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    source: Optional[str] = None
    raw_count: int = 0
    answered: bool = False
    rate_limited: bool = False
    failures: List[Tuple[str, str]] = field(default_factory=list)


def backoff_delay(attempt: int, base_delay: float, max_jitter: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2**attempt + jitter."""
    return base_delay * (2 ** attempt) + random.uniform(0, max_jitter)


def run_chain(
    sources: Sequence[Source],
    query: Any,
    *,
    accept: Optional[Callable[[str, List[Dict[str, Any]]], List[Dict[str, Any]]]] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_jitter: float = DEFAULT_MAX_JITTER,
) -> ChainResult:
    """Try ``sources`` in order and return the first non-empty, accepted answer.

    ``accept(source_name, raw_items)`` filters a raw answer; an empty filtered
    answer advances to the next source just like an empty raw one.
    """
    result = ChainResult()
    for source in sources:
        attempt = 0
        while True:
            try:
                items, exhausted = source.try_fetch(query)
            except TransientFetchError as exc:
                if exc.rate_limited:
                    result.rate_limited = True
                if attempt >= max_retries:
                    logger.warning("%s exhausted %d retries: %s", source.name, max_retries, exc)
                    result.failures.append((source.name, str(exc)))
                    break
                delay = backoff_delay(attempt, base_delay, max_jitter)
                logger.info("%s transient failure (%s); retrying in %.1fs", source.name, exc, delay)
                time.sleep(delay)
                attempt += 1
                continue

            if exhausted or items is None:
                logger.info("%s unavailable for this query; advancing", source.name)
                result.failures.append((source.name, "unavailable"))
                break

            result.answered = True
            accepted = accept(source.name, items) if accept else items
            logger.info("%s returned %d raw, %d accepted", source.name, len(items), len(accepted))
            if accepted:
                result.items = list(accepted)
                result.source = source.name
                result.raw_count = len(items)
                return result
            result.raw_count = max(result.raw_count, len(items))
            break

    return result
