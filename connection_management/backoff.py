"""
Connection Backoff Policy

Linear backoff between store connection attempts: the wait after attempt
``n`` is ``n`` times the base delay, capped so an outage never pushes the
next attempt further out than the configured maximum.
"""

from tenacity import RetryCallState
from tenacity.wait import wait_base

from config import ConnectionSettings

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000


def backoff_delay_ms(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    """
    Return the wait in milliseconds before the attempt following ``attempt``.

    Args:
        attempt: Ordinal of the attempt that just failed, starting at 1.
        base_delay_ms: Delay after the first failure.
        max_delay_ms: Upper bound for any delay.

    Raises:
        ValueError: If ``attempt`` is lower than 1 or a delay is negative.

    Example:
        >>> [backoff_delay_ms(n) for n in (1, 2, 3)]
        [1000, 2000, 3000]
        >>> backoff_delay_ms(100)
        30000
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    if base_delay_ms < 0 or max_delay_ms < 0:
        raise ValueError("delays cannot be negative")
    return min(base_delay_ms * attempt, max_delay_ms)


class LinearBackoff(wait_base):
    """
    tenacity wait strategy wrapping :func:`backoff_delay_ms`.

    tenacity expects seconds, so the millisecond policy is converted on
    the way out.
    """

    def __init__(self, base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
                 max_delay_ms: int = DEFAULT_MAX_DELAY_MS):
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    @classmethod
    def from_settings(cls, settings: ConnectionSettings) -> "LinearBackoff":
        return cls(settings.retry_base_delay_ms, settings.retry_max_delay_ms)

    def delay_ms(self, attempt: int) -> int:
        return backoff_delay_ms(attempt, self.base_delay_ms, self.max_delay_ms)

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_ms(retry_state.attempt_number) / 1000.0
