"""Retry with exponential backoff for cloud API calls.

Two flavours are provided:

- ``retry`` retries any error a bounded number of times, doubling the delay
  between attempts up to a cap, and re-raises the last error unchanged.
- ``with_retry`` only retries errors whose message matches the transient
  vocabulary (throttling, rate limits, service hiccups), adds jitter, and
  can be cancelled through a ``threading.Event``.

Example:
    from holodeck.retry import RetryConfig, with_retry

    vpc = with_retry(lambda: ec2.create_vpc(CidrBlock="10.0.0.0/16"))

    # Retry on a custom predicate
    with_retry(fetch, RetryConfig(max_retries=5), on=on_exception_message("SlowDown"))
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from loguru import logger

from holodeck.exceptions import RetryCancelledError

type RetryPredicate = Callable[[Exception], bool]

RETRYABLE_ERRORS: Final = (
    "RequestLimitExceeded",
    "Throttling",
    "ServiceUnavailable",
    "InternalError",
    "connection reset",
    "timeout",
)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Typed retry policy.

    Attributes:
        max_retries: Retries after the first attempt.
        initial_backoff: Delay in seconds before the first retry.
        max_backoff: Upper bound of any single sleep.
    """

    max_retries: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 30.0


# =============================================================================
# Predicates
# =============================================================================


def on_exception_message(*patterns: str, case_sensitive: bool = False) -> RetryPredicate:
    """Create a predicate that matches when the exception message contains a pattern."""

    def predicate(e: Exception) -> bool:
        msg = str(e)
        if not case_sensitive:
            msg = msg.lower()
            return any(p.lower() in msg for p in patterns)
        return any(p in msg for p in patterns)

    return predicate


is_retryable_error: RetryPredicate = on_exception_message(*RETRYABLE_ERRORS, case_sensitive=True)


# =============================================================================
# Retry loops
# =============================================================================


def retry[T](
    operation: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    Every error is retried. The delay doubles after each failed attempt and
    never exceeds ``max_delay``. The error of the final attempt propagates
    unchanged.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt >= max_attempts:
                raise
            wait = min(delay, max_delay)
            logger.warning(
                f"Retry {attempt}/{max_attempts} after {type(e).__name__}: {e}. Waiting {wait:.1f}s..."
            )
            sleep(wait)
            delay *= 2

    raise AssertionError("unreachable")


def with_retry[T](
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    *,
    cancel: threading.Event | None = None,
    on: RetryPredicate = is_retryable_error,
) -> T:
    """Run ``operation`` retrying only transient errors.

    Non-retryable errors propagate after a single attempt. Each sleep is the
    current backoff plus a jitter drawn uniformly from ``[0, backoff / 2)``,
    capped at ``config.max_backoff``. Setting ``cancel`` while sleeping aborts
    immediately with ``RetryCancelledError``.
    """
    cfg = config or RetryConfig()
    if cfg.max_retries < 0:
        raise ValueError(f"max_retries cannot be negative, got {cfg.max_retries}")
    cancel = cancel or threading.Event()
    backoff = cfg.initial_backoff

    for attempt in range(cfg.max_retries + 1):
        if cancel.is_set():
            raise RetryCancelledError("operation cancelled before attempt")
        try:
            return operation()
        except Exception as e:
            if not on(e) or attempt >= cfg.max_retries:
                raise

            jitter = random.uniform(0, backoff / 2) if backoff > 0 else 0.0
            wait = min(backoff + jitter, cfg.max_backoff)
            logger.warning(
                f"Retry {attempt + 1}/{cfg.max_retries} after {type(e).__name__}: {e}. "
                f"Waiting {wait:.2f}s..."
            )
            if cancel.wait(wait):
                raise RetryCancelledError(f"retry cancelled after {attempt + 1} attempts") from e
            backoff *= 2

    raise AssertionError("unreachable")
