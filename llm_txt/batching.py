"""Bounded-concurrency batch execution for secondary lookups."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Hashable, Iterable, List, Optional, TypeVar

logger = logging.getLogger("batching")

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

# Reference batch size: at most this many lookups in flight at once
DEFAULT_BATCH_SIZE = 25


def partition(keys: List[K], size: int) -> List[List[K]]:
    """Split keys into consecutive batches of at most ``size``."""
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [keys[i:i + size] for i in range(0, len(keys), size)]


def run_in_batches(
    keys: Iterable[K],
    lookup: Callable[[K], Optional[V]],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Dict[K, V]:
    """
    Run ``lookup`` for every distinct key, one batch at a time.

    Lookups inside a batch run concurrently; the whole batch completes
    before the next starts. ``lookup`` is expected to return None for a
    tolerated miss; keys that come back None are left out of the result.
    Any exception a lookup does raise is re-raised once its batch has
    finished, so sibling lookups are never cut short.

    Returns:
        Mapping of key -> value for the lookups that succeeded
    """
    distinct = list(dict.fromkeys(keys))
    results: Dict[K, V] = {}
    if not distinct:
        return results

    for batch in partition(distinct, batch_size):
        error: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            future_to_key = {executor.submit(lookup, key): key for key in batch}
            for future in as_completed(future_to_key):
                key = future_to_key[future]
                try:
                    value = future.result()
                except Exception as e:
                    logger.warning(f"Batch lookup failed for {key}: {e}")
                    if error is None:
                        error = e
                    continue
                if value is not None:
                    results[key] = value
        if error is not None:
            raise error

    return results
