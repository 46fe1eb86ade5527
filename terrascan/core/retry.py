"""Retry helper for independently retryable pipeline stages.

Each preprocessing stage (download, correct, mask, convert, upload) is
wrapped in ``run_with_retry``.  Only ``PipelineError`` instances marked
``retryable`` are retried; anything else propagates on the first
attempt.  Backoff is exponential: ``base * 2 ** (attempt - 1)`` seconds,
capped at ``max_backoff_seconds``.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, TypeVar

from terrascan.core.exceptions import PipelineError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("terrascan.core.retry")

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SECONDS = 2.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0


def backoff_seconds(
    attempt: int,
    *,
    base: float = DEFAULT_RETRY_BASE_SECONDS,
    cap: float = DEFAULT_MAX_BACKOFF_SECONDS,
) -> float:
    """Return the wait before retry number *attempt* (1-based)."""
    if attempt < 1:
        return 0.0
    return min(cap, base * (2 ** (attempt - 1)))


def run_with_retry(
    operation: Callable[[], T],
    *,
    label: str,
    max_retries: int = DEFAULT_MAX_RETRIES,
    retry_base_seconds: float = DEFAULT_RETRY_BASE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Call *operation* until it succeeds or a non-retryable error occurs.

    Args:
        operation: Zero-argument callable performing one attempt.
        label: Short description used in log lines (e.g. ``"download S2A_..."``).
        max_retries: Extra attempts after the first one.
        retry_base_seconds: Exponential backoff base.
        sleep: Sleep function (injected by tests).

    Returns:
        Tuple of (operation result, retries used).

    Raises:
        PipelineError: The last error once retries are exhausted, with
            ``retryable`` cleared so callers treat it as terminal.
    """
    for attempt in range(max_retries + 1):
        try:
            return operation(), attempt
        except PipelineError as exc:
            if not exc.retryable:
                raise
            if attempt >= max_retries:
                logger.error(
                    "Retries exhausted | op=%s | attempts=%d | error=%s",
                    label,
                    attempt + 1,
                    exc,
                )
                exc.retryable = False
                raise
            wait = backoff_seconds(attempt + 1, base=retry_base_seconds)
            logger.warning(
                "Attempt %d/%d failed (retryable) | op=%s | backoff=%.1fs | error=%s",
                attempt + 1,
                max_retries + 1,
                label,
                wait,
                exc,
            )
            sleep(wait)

    # range() always runs at least once and every path returns or raises.
    msg = f"run_with_retry: no attempt made for {label}"
    raise PipelineError(msg)
