"""
Retry policy for transient write conflicts.

A lock or version conflict at commit time is not a business error. The failed
operation is retried once with the same input; whatever the retry raises
(including a business error such as InsufficientStock) reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from domain.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(operation: Callable[[], T], *, description: str, attempts: int = 2) -> T:
    """
    Run `operation`, retrying on ConcurrencyConflict up to `attempts` times in total.

    Raises:
        ConcurrencyConflict: if every attempt conflicted.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt == attempts:
                raise
            logger.info("Write conflict during %s; retrying (attempt %d/%d)", description, attempt + 1, attempts)
    raise AssertionError("unreachable")


__all__ = ["retry_on_conflict"]
