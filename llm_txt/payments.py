"""
x402 payment gating for paid requests.

The server answers an unpaid request above the free tier with HTTP 402
and a JSON challenge listing the accepted payment requirements. The
client retries with an ``X-PAYMENT`` header (base64 JSON payload) which
is checked with the facilitator's ``/verify`` before the fetch and
settled with ``/settle`` after it succeeds.
"""
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from .errors import PaymentRequired, UpstreamTransient
from .models import Estimate, RequestParams
from .pricing import price_to_atomic

logger = logging.getLogger("payments")

X402_VERSION = 1
PAYMENT_HEADER = "X-PAYMENT"
PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"


def encode_payment_header(payload: Dict[str, Any]) -> str:
    """Base64-encode a JSON payload for an x402 header."""
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_payment_header(value: str) -> Dict[str, Any]:
    """
    Decode a base64 JSON x402 header.

    Raises:
        ValueError: If the header is not base64-encoded JSON object
    """
    try:
        decoded = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"malformed payment header: {e}") from e
    if not isinstance(decoded, dict):
        raise ValueError("payment header must encode a JSON object")
    return decoded


@dataclass(frozen=True)
class PaymentConfig:
    """Where and in what asset payments are made."""
    pay_to: str
    network: str
    asset: str
    asset_name: str = "USDC"
    asset_version: str = "2"
    decimals: int = 6
    max_timeout_seconds: int = 300


@dataclass
class Payment:
    """A verified payment waiting to be settled."""
    payload: Dict[str, Any]
    requirements: Dict[str, Any]


def build_requirements(
    params: RequestParams,
    estimate: Estimate,
    resource: str,
    config: PaymentConfig,
) -> Dict[str, Any]:
    """Payment requirements for one request, in x402 'exact' scheme form."""
    return {
        "scheme": "exact",
        "network": config.network,
        "maxAmountRequired": price_to_atomic(estimate.price, config.decimals),
        "resource": resource,
        "description": f"llm.txt for {params.provider.value} {params.identifier}",
        "mimeType": "text/plain",
        "payTo": config.pay_to,
        "maxTimeoutSeconds": config.max_timeout_seconds,
        "asset": config.asset,
        "extra": {"name": config.asset_name, "version": config.asset_version},
    }


def build_challenge(requirements: Dict[str, Any], error: str) -> Dict[str, Any]:
    """The JSON body of a 402 response."""
    return {"x402Version": X402_VERSION, "error": error, "accepts": [requirements]}


class FacilitatorClient:
    """Talks to an x402 facilitator's /verify and /settle endpoints."""

    def __init__(self, session: requests.Session, url: str, timeout: float = 10.0):
        self.session = session
        self.url = url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, payload: Dict[str, Any], requirements: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "x402Version": X402_VERSION,
            "paymentPayload": payload,
            "paymentRequirements": requirements,
        }
        try:
            response = self.session.post(f"{self.url}{path}", json=body, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise UpstreamTransient(f"Payment facilitator {path} failed: {e}") from e

    def verify(self, payload: Dict[str, Any], requirements: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("/verify", payload, requirements)

    def settle(self, payload: Dict[str, Any], requirements: Dict[str, Any]) -> Dict[str, Any]:
        return self._post("/settle", payload, requirements)


class PaymentGate:
    """
    Enforces payment for requests outside the free tier.

    Usage:
        payment = gate.authorize(params, estimate, resource, request_header)
        ... run the fetch ...
        response_header = gate.settle(payment)
    """

    def __init__(self, config: PaymentConfig, facilitator: Any, enabled: bool = True):
        self.config = config
        self.facilitator = facilitator
        self.enabled = enabled

    def authorize(
        self,
        params: RequestParams,
        estimate: Estimate,
        resource: str,
        header: Optional[str],
    ) -> Optional[Payment]:
        """
        Check the request's payment header.

        Returns:
            None for free requests (or when gating is disabled), otherwise
            the verified Payment

        Raises:
            PaymentRequired: Missing, malformed or rejected payment
        """
        if not self.enabled or estimate.is_free:
            return None

        requirements = build_requirements(params, estimate, resource, self.config)
        if not header:
            raise PaymentRequired(
                "X-PAYMENT header is required",
                build_challenge(requirements, "X-PAYMENT header is required"),
            )

        try:
            payload = decode_payment_header(header)
        except ValueError as e:
            raise PaymentRequired(str(e), build_challenge(requirements, str(e))) from e

        verdict = self.facilitator.verify(payload, requirements)
        if not verdict.get("isValid"):
            reason = verdict.get("invalidReason") or "payment rejected"
            logger.info(f"Payment rejected for {resource}: {reason}")
            raise PaymentRequired(reason, build_challenge(requirements, reason))

        logger.info(f"Payment verified for {resource} from {verdict.get('payer', 'unknown')}")
        return Payment(payload=payload, requirements=requirements)

    def settle(self, payment: Payment) -> str:
        """
        Settle a verified payment after the fetch succeeded.

        Returns:
            Value for the X-PAYMENT-RESPONSE header
        """
        result = self.facilitator.settle(payment.payload, payment.requirements)
        if not result.get("success"):
            reason = result.get("errorReason") or "settlement failed"
            raise PaymentRequired(reason, build_challenge(payment.requirements, reason))
        return encode_payment_header(result)
