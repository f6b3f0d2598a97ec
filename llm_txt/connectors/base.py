"""
Connector capability interface shared by every provider.

A connector knows how to resolve an identifier, fetch one page of
items, fetch a single related item and fetch the primary entity. All of
its outbound calls go through ``_request``, which takes a rate-limit
slot keyed by the upstream path, applies the request deadline and maps
transport failures onto the pipeline's error types.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from ..cache import CacheCategory, TTLCache, identifier_key
from ..clock import Deadline
from ..errors import (
    LlmTxtError,
    NotFound,
    SecondaryLookupFailed,
    Timeout,
    UpstreamTransient,
)
from ..models import FeedItem, IdentifierKind, Page, Provider, RequestParams
from ..pricing import get_rule_table
from ..rate_limiter import RateLimiter

logger = logging.getLogger("connectors")

M = TypeVar("M", bound=BaseModel)

REQUEST_TIMEOUT = 30.0


class Connector(ABC):
    """
    Base class for provider connectors.

    Subclasses set ``provider`` and ``page_size`` and implement
    ``_resolve``, ``fetch_primary``, ``fetch_page`` and optionally
    ``_lookup_one`` and ``count_hint``.
    """

    provider: Provider
    page_size: int = 100

    def __init__(
        self,
        session: Any,
        rate_limiter: RateLimiter,
        cache: TTLCache,
        request_timeout: float = REQUEST_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            session: Transport with a ``send(prepared_request, **kwargs)``
                method, normally a ``requests.Session``
            rate_limiter: Shared limiter every outbound call goes through
            cache: Shared TTL cache for identifier resolution
            request_timeout: Per-call socket timeout in seconds
            headers: Headers added to every upstream call
        """
        self.session = session
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.request_timeout = request_timeout
        self.headers = headers or {}
        self.log = logging.getLogger(f"connectors.{self.provider.value}")

    @property
    def default_limit(self) -> Optional[int]:
        """Item count used when the caller gives no limit."""
        return get_rule_table(self.provider).default_limit

    # ----- HTTP -----

    def _request(
        self,
        endpoint: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
        not_found_statuses: tuple = (404,),
    ) -> requests.Response:
        """
        Issue a rate-limited GET against the provider.

        Args:
            endpoint: Rate-limit key, the upstream path template
            url: Absolute URL
            params: Query parameters (None values are dropped)
            deadline: Request deadline
            not_found_statuses: Statuses reported as NotFound

        Raises:
            NotFound: Provider reports no such entity
            UpstreamTransient: Network failure or error status
            Timeout: Deadline exceeded
        """
        self.rate_limiter.acquire(endpoint, deadline)
        timeout = deadline.timeout_for(self.request_timeout) if deadline else self.request_timeout

        query = {k: v for k, v in (params or {}).items() if v is not None}
        prepared = requests.Request("GET", url, params=query, headers=self.headers).prepare()

        try:
            response = self.session.send(prepared, timeout=timeout)
        except requests.Timeout as e:
            if deadline is not None and deadline.expired:
                raise Timeout(f"Request to {endpoint} exceeded the deadline") from e
            raise UpstreamTransient(f"{self.provider.value} timed out on {endpoint}") from e
        except requests.RequestException as e:
            raise UpstreamTransient(f"{self.provider.value} request to {endpoint} failed: {e}") from e

        if response.status_code in not_found_statuses:
            raise NotFound(f"{self.provider.value}: not found ({endpoint})")
        if response.status_code >= 400:
            raise UpstreamTransient(
                f"{self.provider.value} returned {response.status_code} for {endpoint}"
            )
        return response

    def _get_json(
        self,
        endpoint: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        response = self._request(endpoint, url, params=params, deadline=deadline, **kwargs)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamTransient(f"{self.provider.value} sent invalid JSON for {endpoint}") from e
        if not isinstance(data, dict):
            raise UpstreamTransient(f"{self.provider.value} sent unexpected JSON for {endpoint}")
        return data

    def _validate(self, schema: Type[M], data: Any, what: str) -> M:
        """Validate an upstream payload, failing fast on malformed data."""
        try:
            return schema.model_validate(data)
        except ValidationError as e:
            raise UpstreamTransient(
                f"Malformed {self.provider.value} {what}: {e.error_count()} validation error(s)"
            ) from e

    # ----- Capabilities -----

    def resolve_identifier(self, params: RequestParams, deadline: Optional[Deadline] = None) -> str:
        """
        Turn the request's identifier into the provider's canonical id.

        Ids are returned as-is; handles and URLs are resolved once and
        cached under the normalized identifier.
        """
        if params.identifier_kind == IdentifierKind.ID:
            return params.identifier

        key = identifier_key(self.provider.value, params.identifier)
        return self.cache.get_or_set(
            key,
            lambda: self._resolve(params.identifier, deadline),
            category=CacheCategory.IDENTIFIER,
        )

    @abstractmethod
    def _resolve(self, handle: str, deadline: Optional[Deadline]) -> str:
        """Resolve a normalized handle or URL; raise NotFound on no match."""

    @abstractmethod
    def fetch_primary(
        self,
        canonical_id: str,
        params: RequestParams,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, Any]:
        """Fetch the primary entity (profile, feed channel, repository)."""

    @abstractmethod
    def fetch_page(
        self,
        canonical_id: str,
        cursor: Optional[str],
        params: RequestParams,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        """Fetch one page, always at the provider's maximum page size."""

    def fetch_one(self, item_id: str, deadline: Optional[Deadline] = None) -> Optional[FeedItem]:
        """
        Fetch a single related item (a reply parent).

        A miss, an upstream error or a malformed payload is logged and
        reported as None so it never aborts the primary fetch. A spent
        deadline still raises.
        """
        try:
            return self._lookup_one(item_id, deadline)
        except Timeout:
            raise
        except LlmTxtError as e:
            self.log.warning(f"Failed to fetch parent {item_id}: {e}")
            return None
        except Exception as e:
            self.log.warning(f"Unexpected error fetching parent {item_id}: {e!r}")
            return None

    def _lookup_one(self, item_id: str, deadline: Optional[Deadline]) -> FeedItem:
        raise SecondaryLookupFailed(f"{self.provider.value} has no related-item lookup")

    def count_hint(
        self,
        canonical_id: str,
        params: RequestParams,
        deadline: Optional[Deadline] = None,
    ) -> Optional[int]:
        """Size of the full result set if the provider reports it cheaply."""
        return None
