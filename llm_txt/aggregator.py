"""
Paginating aggregator: drives one connector across pages.

Fetching -> Filtering -> Sorting -> Truncating -> BatchResolvingParents.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .batching import DEFAULT_BATCH_SIZE, run_in_batches
from .clock import Deadline
from .connectors.base import Connector
from .models import FeedItem, RequestParams, SortOrder

logger = logging.getLogger("aggregator")


@dataclass
class AggregateResult:
    """Items in final order plus merged page metadata."""
    items: List[FeedItem]
    meta: Dict[str, Any] = field(default_factory=dict)
    pages: int = 0


class PaginatingAggregator:
    """
    Collects a bounded or complete item history from a connector.

    - Pages are requested until the cursor runs out, or until a bounded
      request holds at least ``limit`` items after reply filtering
    - "fetch all" and "oldest first" always walk to the end of history,
      since the oldest N items are only known once the last page is in
    - Provider pages arrive newest-first; "oldest" reverses once at the end
    - Truncation to ``limit`` happens after sorting
    - Reply parents are looked up in concurrent batches for the items
      that survive truncation; a failed lookup only leaves that item's
      ``parent`` unset

    Upstream errors in the page loop propagate; parent lookup misses do not.
    """

    def __init__(
        self,
        connector: Connector,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_pages: Optional[int] = None,
    ):
        """
        Args:
            connector: Provider connector to drive
            batch_size: Max concurrent parent lookups
            max_pages: Optional hard stop on the number of pages
        """
        self.connector = connector
        self.batch_size = batch_size
        self.max_pages = max_pages

    def run(
        self,
        canonical_id: str,
        params: RequestParams,
        deadline: Optional[Deadline] = None,
    ) -> AggregateResult:
        limit = params.limit if params.limit is not None else self.connector.default_limit
        bounded = limit is not None and not params.fetch_all
        walk_to_end = not bounded or params.sort_order == SortOrder.OLDEST

        result = AggregateResult(items=[])
        cursor: Optional[str] = None

        # Fetching + Filtering
        while True:
            if deadline is not None:
                deadline.check()
            page = self.connector.fetch_page(canonical_id, cursor, params, deadline)
            result.pages += 1
            result.meta.update(page.meta)

            kept = [item for item in page.items if params.include_replies or not item.is_reply]
            result.items.extend(kept)
            cursor = page.next_cursor

            if not cursor:
                break
            if not walk_to_end and len(result.items) >= limit:
                break
            if self.max_pages is not None and result.pages >= self.max_pages:
                logger.warning(
                    f"Stopping {self.connector.provider.value} fetch at {result.pages} pages"
                )
                break

        logger.info(
            f"Fetched {len(result.items)} {self.connector.provider.value} items "
            f"in {result.pages} page(s)"
        )

        # Sorting
        if params.sort_order == SortOrder.OLDEST:
            result.items.reverse()

        # Truncating
        if bounded:
            result.items = result.items[:limit]

        # BatchResolvingParents
        if params.include_parents:
            self.resolve_parents(result.items, deadline)

        return result

    def resolve_parents(self, items: List[FeedItem], deadline: Optional[Deadline] = None) -> int:
        """
        Attach ``parent`` to every item whose parent lookup succeeds.

        Returns:
            Number of items that received a parent
        """
        parent_ids = [item.parent_id for item in items if item.parent_id]
        if not parent_ids:
            return 0

        parents = run_in_batches(
            parent_ids,
            lambda parent_id: self.connector.fetch_one(parent_id, deadline),
            self.batch_size,
        )

        linked = 0
        for item in items:
            parent = parents.get(item.parent_id) if item.parent_id else None
            if parent is not None:
                item.parent = parent
                linked += 1

        missing = len(set(parent_ids)) - len(parents)
        if missing:
            logger.info(f"{missing} parent lookup(s) failed; affected items have no parent")
        return linked
