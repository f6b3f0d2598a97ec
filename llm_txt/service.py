"""
Server-side operations: fetch and estimate.
"""
import logging
from typing import Dict, Optional

from .aggregator import PaginatingAggregator
from .batching import DEFAULT_BATCH_SIZE
from .cache import CacheCategory, TTLCache, estimate_key
from .clock import Clock, Deadline
from .connectors.base import Connector
from .errors import InvalidParameter
from .models import Estimate, FetchResult, Provider, RequestParams
from .pricing import estimate_price, fingerprint, get_rule_table, is_free_tier

logger = logging.getLogger("service")


class FeedService:
    """
    Runs requests against the connectors.

    One instance per process; it holds no request state of its own.
    """

    def __init__(
        self,
        connectors: Dict[Provider, Connector],
        cache: TTLCache,
        batch_size: int = DEFAULT_BATCH_SIZE,
        deadline_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self.connectors = connectors
        self.cache = cache
        self.batch_size = batch_size
        self.deadline_seconds = deadline_seconds
        self.clock = clock or Clock()

    def connector_for(self, provider: Provider) -> Connector:
        try:
            return self.connectors[provider]
        except KeyError:
            raise InvalidParameter(f"Unsupported provider: {provider.value}") from None

    def fetch(self, params: RequestParams, deadline: Optional[Deadline] = None) -> FetchResult:
        """
        Resolve the identifier and aggregate its items.

        Raises:
            NotFound, UpstreamTransient, Timeout: Propagated from the
                connector; nothing partial is returned
        """
        deadline = deadline or Deadline(self.deadline_seconds, self.clock)
        connector = self.connector_for(params.provider)

        canonical_id = connector.resolve_identifier(params, deadline)
        primary = connector.fetch_primary(canonical_id, params, deadline)
        aggregate = PaginatingAggregator(connector, self.batch_size).run(
            canonical_id, params, deadline
        )
        deadline.check()

        logger.info(
            f"{params.provider.value}:{params.identifier} -> {len(aggregate.items)} items"
        )
        return FetchResult(
            primary_entity=primary,
            items=tuple(aggregate.items),
            params=params,
            meta=aggregate.meta,
        )

    def estimate(self, params: RequestParams) -> Estimate:
        """
        Price a request.

        Free requests answer immediately. Paid ones are cached by pricing
        fingerprint; the provider is only asked for the result-set size
        when the price depends on it (fetch all, whole repositories).
        """
        if is_free_tier(params):
            return estimate_price(params)

        key = estimate_key(params.provider.value, fingerprint(params))
        return self.cache.get_or_set(
            key,
            lambda: self._compute_estimate(params),
            category=CacheCategory.ESTIMATE,
        )

    def _compute_estimate(self, params: RequestParams) -> Estimate:
        table = get_rule_table(params.provider)
        count_hint = None
        if params.fetch_all or not table.paged:
            deadline = Deadline(self.deadline_seconds, self.clock)
            connector = self.connector_for(params.provider)
            canonical_id = connector.resolve_identifier(params, deadline)
            count_hint = connector.count_hint(canonical_id, params, deadline)
        return estimate_price(params, count_hint=count_hint, table=table)
