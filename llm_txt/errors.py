"""
Error taxonomy for the fetch pipeline.

Every error carries the HTTP status the service answers with, so the
request boundary can tell "needs payment" from "bad input" from
"upstream is down" without inspecting messages.
"""
from typing import Any, Dict, Optional


class LlmTxtError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LlmTxtError):
    """Identifier does not resolve at the provider."""

    status_code = 404


class InvalidParameter(LlmTxtError):
    """Request parameters failed boundary validation."""

    status_code = 400


class UpstreamTransient(LlmTxtError):
    """Network or provider failure during the primary fetch."""

    status_code = 502


class SecondaryLookupFailed(LlmTxtError):
    """A parent lookup missed. Only ever recovered inside the aggregator."""

    status_code = 502


class PaymentRequired(LlmTxtError):
    """Payment challenge could not be satisfied."""

    status_code = 402

    def __init__(self, message: str, challenge: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.challenge = challenge or {}


class Timeout(LlmTxtError):
    """Fetch deadline exceeded. Partial results are discarded."""

    status_code = 504
