"""Retry helper for calls that may hit transient network failures."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

import httpx

T = TypeVar("T")

_logger = logging.getLogger(__name__)

_NETWORK_MARKERS = ("fetch", "network", "timeout", "timed out", "connection")


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _NETWORK_MARKERS)


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    delay: float = 1.0,
    *,
    should_retry: Callable[[BaseException], bool] = is_network_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` up to ``max_retries`` times, doubling the wait after each failure.

    Errors rejected by ``should_retry`` propagate immediately.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(max_retries):
        try:
            return fn()
        except Exception as exc:
            last_error = exc
            if not should_retry(exc) or attempt >= max_retries - 1:
                break
            backoff = delay * (2 ** attempt)
            _logger.info("Retrying after %s (attempt %d, wait %.1fs)", exc, attempt + 1, backoff)
            sleep(backoff)
    if last_error is not None:
        raise last_error
    raise RuntimeError("Max retries exceeded")


__all__ = ["is_network_error", "retry_with_backoff"]
