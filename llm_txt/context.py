"""
Process-wide wiring: one rate limiter, one cache and one set of
connectors, built from settings and handed to request handlers.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

from config.settings import Settings

from .cache import TTLCache
from .clock import Clock
from .connectors import (
    BlueskyConnector,
    Connector,
    FarcasterConnector,
    GitConnector,
    RssConnector,
)
from .models import Provider
from .payments import FacilitatorClient, PaymentConfig, PaymentGate
from .rate_limiter import RateLimiter
from .service import FeedService

load_dotenv()

logger = logging.getLogger("context")


@dataclass
class AppContext:
    """Everything a request handler needs. Built once per process."""
    settings: Settings
    rate_limiter: RateLimiter
    cache: TTLCache
    connectors: Dict[Provider, Connector]
    service: FeedService
    gate: PaymentGate
    clock: Clock


def build_context(
    settings: Settings,
    session: Optional[Any] = None,
    clock: Optional[Clock] = None,
    facilitator: Optional[Any] = None,
) -> AppContext:
    """
    Build an isolated application context.

    Args:
        settings: Loaded settings
        session: Outbound transport (default: a new requests.Session)
        clock: Clock shared by the limiter, cache and deadlines
        facilitator: Payment facilitator (default: FacilitatorClient)
    """
    clock = clock or Clock()
    session = session or requests.Session()

    rate_limiter = RateLimiter(
        endpoint_ceiling=settings.rate_limit_endpoint_ceiling,
        global_ceiling=settings.rate_limit_global_ceiling,
        window_seconds=settings.rate_limit_window_seconds,
        buffer_seconds=settings.rate_limit_buffer_seconds,
        clock=clock,
    )
    cache = TTLCache(
        max_entries=settings.cache_max_entries,
        clock=clock,
        coalesce_timeout=settings.fetch_deadline_seconds,
    )

    shared = dict(request_timeout=settings.request_timeout_seconds)
    connectors: Dict[Provider, Connector] = {
        Provider.FARCASTER: FarcasterConnector(
            session, rate_limiter, cache,
            api_key=settings.neynar_api_key, base_url=settings.neynar_base_url, **shared,
        ),
        Provider.BLUESKY: BlueskyConnector(
            session, rate_limiter, cache, base_url=settings.bsky_base_url, **shared,
        ),
        Provider.RSS: RssConnector(session, rate_limiter, cache, **shared),
        Provider.GIT: GitConnector(
            session, rate_limiter, cache,
            token=settings.github_token,
            base_url=settings.github_api_url,
            raw_url=settings.github_raw_url,
            **shared,
        ),
    }
    if not settings.neynar_api_key:
        logger.warning("NEYNAR_API_KEY not set; Farcaster requests will be rejected upstream")

    service = FeedService(
        connectors,
        cache,
        batch_size=settings.parent_batch_size,
        deadline_seconds=settings.fetch_deadline_seconds,
        clock=clock,
    )

    gate = PaymentGate(
        PaymentConfig(
            pay_to=settings.pay_to_address,
            network=settings.payment_network,
            asset=settings.payment_asset,
        ),
        facilitator or FacilitatorClient(session, settings.facilitator_url),
        enabled=settings.payment_enabled,
    )

    return AppContext(
        settings=settings,
        rate_limiter=rate_limiter,
        cache=cache,
        connectors=connectors,
        service=service,
        gate=gate,
        clock=clock,
    )
