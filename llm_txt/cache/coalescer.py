"""
Per-key request coalescing.

When several threads need the same missing cache key at once (two
callers resolving the same handle, two clients asking for the same
estimate), only one of them computes the value and the rest share it.
This also gives the cache a single ordering per key for its
compute-and-store sequence.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlight:
    """Tracks an in-progress computation for one key."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent computations of the same key run once.

    Pattern:
    - First caller for a key becomes the initiator and runs ``compute``
    - Later callers for the same key wait on the initiator's Event
    - The initiator's ``on_result`` runs before waiters are released,
      so a store into the cache is visible to everyone afterwards
    - Errors are re-raised in every caller
    """

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Max seconds a waiter blocks on an in-flight computation
        """
        self._in_flight: Dict[str, InFlight] = {}
        self._lock = threading.Lock()
        self._timeout = timeout

    def run(
        self,
        key: str,
        compute: Callable[[], Any],
        on_result: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Join the in-flight computation for ``key`` or start one.

        Raises:
            TimeoutError: If waiting on another caller times out
            Exception: Any error from ``compute`` is propagated
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                is_initiator = False
                logger.debug(f"Coalescing {key} (waiters: {in_flight.waiter_count})")
            else:
                in_flight = self._in_flight[key] = InFlight()
                is_initiator = True

        if is_initiator:
            try:
                in_flight.result = compute()
                if on_result is not None:
                    on_result(in_flight.result)
            except Exception as e:
                in_flight.error = e
            finally:
                with self._lock:
                    self._in_flight.pop(key, None)
                in_flight.event.set()

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result

        if not in_flight.event.wait(timeout=self._timeout):
            logger.error(f"Timeout waiting for coalesced computation: {key}")
            raise TimeoutError(f"Computation for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    @property
    def active(self) -> int:
        """Number of keys currently being computed."""
        with self._lock:
            return len(self._in_flight)
