"""
Time source and request deadlines.

The rate limiter, cache and deadline all read time through a Clock so
tests can drive them with a fake one.
"""
import time
from typing import Optional

from .errors import Timeout


class Clock:
    """Monotonic wall clock with a blocking sleep."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class Deadline:
    """
    Absolute deadline for one fetch.

    Every outbound call asks ``timeout_for()`` for its socket timeout and
    every wait is capped by ``remaining()``; once the deadline passes
    ``check()`` raises Timeout and whatever was accumulated is dropped.
    """

    def __init__(self, seconds: Optional[float], clock: Optional[Clock] = None):
        self.clock = clock or Clock()
        self.seconds = seconds
        self.expires_at = None if seconds is None else self.clock.now() + seconds

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - self.clock.now())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        if self.expired:
            raise Timeout(
                f"Request timed out after {self.seconds:g}s. "
                "Try reducing the number of posts or disable 'Fetch All'."
            )

    def timeout_for(self, request_timeout: float) -> float:
        """Socket timeout for the next call: the smaller of both budgets."""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return request_timeout
        return min(request_timeout, remaining)
