"""
Backoff for the two upstream reads: the duplicate report fetch and the
live lesson lookup.

A wrapped call is retried while it raises one of the listed transient
errors. When the attempts run out the last error is re-raised as
``give_up`` (UpstreamUnavailable by default), so callers only ever see the
error taxonomy, never the transport exception.
"""

import time
import functools
from typing import Callable, List, Tuple, Type

from .errors import UpstreamUnavailable
from .logger import get_logger

RETRYABLE_HTTP_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def backoff_delays(
    max_retries: int,
    base_delay: float,
    max_delay: float = 30.0,
    factor: float = 2.0,
) -> List[float]:
    """Sleep before each retry: base_delay * factor**n, capped at max_delay."""
    return [min(base_delay * factor ** n, max_delay) for n in range(max_retries)]


def exponential_backoff(
    what: str,
    retry_on: Tuple[Type[Exception], ...],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    factor: float = 2.0,
    give_up: Type[Exception] = UpstreamUnavailable,
):
    """
    Retry a call on transient errors, then raise ``give_up``.

    Args:
        what: Name of the upstream read, used in log lines and the final error
        retry_on: Exception types worth another attempt; anything else propagates
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay: Sleep before the first retry, in seconds
        max_delay: Upper bound for any single sleep
        factor: Growth of the sleep between retries
        give_up: Error raised, chained to the last failure, once retries are spent
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(max_retries, base_delay, max_delay, factor)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt > len(delays):
                        get_logger().error(f"{what} failed", attempts=attempt, error=str(e))
                        raise give_up(f"{what} failed after {attempt} attempts: {e}") from e
                    delay = delays[attempt - 1]
                    get_logger().warning(f"Retrying {what}", attempt=attempt, delay=delay, error=str(e))
                    time.sleep(delay)

        return wrapper
    return decorator


def should_retry_http_status(status_code: int) -> bool:
    """Timeouts, rate limiting and server-side failures are worth another attempt."""
    return status_code in RETRYABLE_HTTP_STATUSES
