"""
Client SDK for the llm-txt service.

Gives instant pricing feedback without a round trip (``is_free_tier``,
``fingerprint``, ``build_url`` are pure), asks the server for
authoritative estimates, and fetches with automatic x402 payment when a
signer is configured.

Usage:
    client = LlmTxtClient(Provider.FARCASTER)
    client.build_url(username="vitalik", limit=100)
    estimate = client.get_server_estimate(username="vitalik", all=True)
    result = client.fetch(username="vitalik", limit=10)
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Optional

import requests

from config.settings import settings

from .cache import CacheCategory, TTLCache, estimate_key
from .clock import Clock, Deadline
from .errors import InvalidParameter, Timeout
from .models import Estimate, Provider, RequestParams
from .params import build_path
from .pricing import FREE_PRICE, fingerprint, is_free_tier
from .transport import PaymentGatedTransport, Signer

logger = logging.getLogger("client")

DEFAULT_TIMEOUT = 255.0  # 4.25 minutes
ESTIMATE_CACHE_TTL = 60
FETCH_WORKERS = 4
TIMEOUT_MESSAGE = "Request timed out. Try reducing the number of posts or disable 'Fetch All'."

# Keyword options that map straight onto RequestParams fields
_OPTION_ALIASES = {
    "all": "fetch_all",
    "includeReplies": "include_replies",
    "includeParents": "include_parents",
    "includeReactions": "include_reactions",
    "includeContent": "include_content",
    "includeTree": "include_tree",
    "sortOrder": "sort_order",
    "maxFileSize": "max_file_size",
    "includePatterns": "include_patterns",
    "excludePatterns": "exclude_patterns",
}


@dataclass
class FetchResponse:
    """Raw service response."""
    text: str
    status: int


class LlmTxtClient:
    """Client for one provider's llm-txt endpoints."""

    def __init__(
        self,
        provider: Provider,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        signer: Optional[Signer] = None,
        session: Optional[Any] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            provider: Which connector to talk to
            base_url: Service URL (default: LLM_TXT_API_URL)
            timeout: Deadline in seconds for a whole fetch, payment retry included
            signer: Payment signer; without one, paid requests come back 402
            session: Transport with ``send`` (default: requests.Session)
            clock: Clock for the fetch deadline and the estimate cache
        """
        self.provider = provider
        self.base_url = (base_url or settings.llm_txt_api_url).rstrip("/")
        self.timeout = timeout
        self.clock = clock or Clock()
        self.session = session or requests.Session()
        self.transport = PaymentGatedTransport(self.session, signer)
        self.estimates = TTLCache(clock=self.clock)
        self._executor = ThreadPoolExecutor(max_workers=FETCH_WORKERS, thread_name_prefix="llm-txt-fetch")

    def params(self, params: Optional[RequestParams] = None, **options: Any) -> RequestParams:
        """Build RequestParams from keyword options (camelCase names accepted)."""
        if params is not None:
            if params.provider != self.provider:
                raise InvalidParameter(
                    f"params are for {params.provider.value}, client is {self.provider.value}"
                )
            return params
        normalized = {_OPTION_ALIASES.get(k, k): v for k, v in options.items()}
        return RequestParams.from_options(self.provider, **normalized)

    def build_url(self, params: Optional[RequestParams] = None, **options: Any) -> str:
        """URL for a query, usable directly in a browser."""
        return f"{self.base_url}{build_path(self.params(params, **options))}"

    def is_free_tier(self, params: Optional[RequestParams] = None, **options: Any) -> bool:
        """Quick local check, identical to the server's rule."""
        return is_free_tier(self.params(params, **options))

    def fingerprint(self, params: Optional[RequestParams] = None, **options: Any) -> str:
        return fingerprint(self.params(params, **options))

    def get_server_estimate(
        self, params: Optional[RequestParams] = None, **options: Any
    ) -> Optional[Estimate]:
        """
        Get the authoritative price from the server.

        Free-tier requests are answered locally. Paid ones are cached by
        pricing fingerprint.

        Returns:
            Estimate, or None if the server could not be asked
        """
        request_params = self.params(params, **options)
        if is_free_tier(request_params):
            return Estimate(price=FREE_PRICE, is_free=True, count_hint=None)

        key = estimate_key(self.provider.value, fingerprint(request_params))
        cached = self.estimates.get(key)
        if cached is not None:
            return cached

        url = f"{self.base_url}{build_path(request_params, estimate=True)}"
        prepared = requests.Request("GET", url, headers={"Accept": "application/json"}).prepare()
        # Estimates never need payment, so skip the payment wrapper
        try:
            response = self.session.send(prepared, timeout=self.timeout)
            if not response.ok:
                logger.info(f"Estimate request failed with {response.status_code}")
                return None
            data = response.json()
            estimate = Estimate(
                price=data["price"],
                is_free=bool(data["isFree"]),
                count_hint=data.get("countHint"),
            )
        except (requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Estimate request failed: {e}")
            return None

        self.estimates.set(key, estimate, ttl=ESTIMATE_CACHE_TTL, category=CacheCategory.ESTIMATE)
        return estimate

    def fetch(self, params: Optional[RequestParams] = None, **options: Any) -> FetchResponse:
        """
        Fetch the llm.txt text.

        With a signer, payment challenges are handled automatically;
        without one, paid requests return status 402.

        The send runs on a worker thread so a body that trickles in
        slowly still cannot outlive the deadline.

        Raises:
            Timeout: If the whole fetch exceeds ``timeout``
            PaymentRequired: If a paid retry is refused
        """
        url = self.build_url(params, **options)
        prepared = requests.Request("GET", url, headers={"Accept": "text/plain"}).prepare()
        deadline = Deadline(self.timeout, self.clock)

        future = self._executor.submit(self.transport.send, prepared, deadline=deadline)
        try:
            response = future.result(timeout=deadline.remaining())
        except FutureTimeout:
            future.cancel()
            logger.warning(f"Fetch of {url} exceeded {self.timeout:g}s")
            raise Timeout(TIMEOUT_MESSAGE) from None
        except requests.Timeout as e:
            raise Timeout(TIMEOUT_MESSAGE) from e
        return FetchResponse(text=response.text, status=response.status_code)
