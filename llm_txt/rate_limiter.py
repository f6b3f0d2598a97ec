"""Sliding-window rate limiting for outbound provider calls."""
import logging
from collections import defaultdict, deque
from threading import Lock
from typing import Deque, Dict, Optional

from .clock import Clock, Deadline
from .errors import Timeout

logger = logging.getLogger("rate_limiter")

# Configuration (Neynar Starter plan: 300 RPM per endpoint, 500 RPM global)
ENDPOINT_CEILING = 250  # Safety margin below 300 RPM
GLOBAL_CEILING = 450  # Safety margin below 500 RPM
WINDOW_SECONDS = 60.0
BUFFER_SECONDS = 0.1


class RateLimiter:
    """
    Sliding window rate limiter for upstream API calls.

    Keeps one global window and one window per endpoint key. A call is
    admitted only while both windows are below their ceilings; otherwise
    the caller sleeps until the oldest entry of the limiting window
    leaves the interval and checks again from scratch, since another
    thread may have taken the freed slot in the meantime.

    Thread-safe. Read-modify-write of the windows happens under the
    endpoint lock and then the global lock; sleeping never holds a lock.
    """

    def __init__(
        self,
        endpoint_ceiling: int = ENDPOINT_CEILING,
        global_ceiling: int = GLOBAL_CEILING,
        window_seconds: float = WINDOW_SECONDS,
        buffer_seconds: float = BUFFER_SECONDS,
        clock: Optional[Clock] = None,
    ):
        if endpoint_ceiling <= 0 or global_ceiling <= 0:
            raise ValueError("rate limit ceilings must be positive")
        self.endpoint_ceiling = endpoint_ceiling
        self.global_ceiling = global_ceiling
        self.window_seconds = window_seconds
        self.buffer_seconds = buffer_seconds
        self.clock = clock or Clock()

        self._global: Deque[float] = deque()
        self._endpoints: Dict[str, Deque[float]] = defaultdict(deque)
        self._endpoint_locks: Dict[str, Lock] = {}
        self._global_lock = Lock()
        self._registry_lock = Lock()
        self._waits = 0

    def _lock_for(self, endpoint: str) -> Lock:
        with self._registry_lock:
            lock = self._endpoint_locks.get(endpoint)
            if lock is None:
                lock = self._endpoint_locks[endpoint] = Lock()
            return lock

    def _prune(self, window: Deque[float], now: float) -> None:
        window_start = now - self.window_seconds
        while window and window[0] <= window_start:
            window.popleft()

    def _try_admit(self, endpoint: str) -> Optional[float]:
        """
        Admit the call or report how long to wait.

        Returns:
            None if admitted, otherwise seconds until a slot may free up
        """
        with self._lock_for(endpoint):
            with self._global_lock:
                now = self.clock.now()
                endpoint_window = self._endpoints[endpoint]
                self._prune(self._global, now)
                self._prune(endpoint_window, now)

                if len(self._global) >= self.global_ceiling:
                    limiting = self._global
                elif len(endpoint_window) >= self.endpoint_ceiling:
                    limiting = endpoint_window
                else:
                    self._global.append(now)
                    endpoint_window.append(now)
                    return None

                oldest = limiting[0]
                return self.window_seconds - (now - oldest) + self.buffer_seconds

    def acquire(self, endpoint: str, deadline: Optional[Deadline] = None) -> None:
        """
        Block until a call to ``endpoint`` is admitted.

        Args:
            endpoint: Upstream path used as the per-endpoint window key
            deadline: Optional request deadline; a wait that would outlast
                it raises Timeout instead of sleeping

        Raises:
            Timeout: If the deadline cannot be met
        """
        while True:
            delay = self._try_admit(endpoint)
            if delay is None:
                return

            if deadline is not None:
                remaining = deadline.remaining()
                if remaining is not None and delay > remaining:
                    raise Timeout(
                        f"Rate limit wait of {delay:.1f}s for {endpoint} "
                        "exceeds the request deadline"
                    )

            self._waits += 1
            logger.info(f"Rate limit reached for {endpoint}, waiting {delay:.2f}s")
            self.clock.sleep(delay)

    def remaining(self, endpoint: str) -> int:
        """
        Get the number of calls that would be admitted right now.

        Args:
            endpoint: Endpoint key

        Returns:
            Calls left before either window hits its ceiling
        """
        with self._lock_for(endpoint):
            with self._global_lock:
                now = self.clock.now()
                self._prune(self._global, now)
                endpoint_window = self._endpoints[endpoint]
                self._prune(endpoint_window, now)
                return max(
                    0,
                    min(
                        self.global_ceiling - len(self._global),
                        self.endpoint_ceiling - len(endpoint_window),
                    ),
                )

    def reset(self) -> None:
        """Forget all recorded calls. Useful for testing."""
        with self._global_lock:
            self._global.clear()
            self._endpoints.clear()

    def get_stats(self) -> Dict[str, object]:
        """Get limiter statistics."""
        with self._global_lock:
            now = self.clock.now()
            self._prune(self._global, now)
            return {
                "global_in_window": len(self._global),
                "global_ceiling": self.global_ceiling,
                "endpoint_ceiling": self.endpoint_ceiling,
                "endpoints": {
                    key: sum(1 for ts in window if ts > now - self.window_seconds)
                    for key, window in self._endpoints.items()
                },
                "waits": self._waits,
            }
