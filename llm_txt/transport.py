"""
Client-side payment handling around an HTTP transport.
"""
import logging
import threading
from typing import Any, Dict, Optional, Protocol, Union

import requests

from .clock import Deadline
from .errors import PaymentRequired
from .payments import PAYMENT_HEADER, encode_payment_header

logger = logging.getLogger("transport")

PAYMENT_REQUIRED_STATUS = 402


class Signer(Protocol):
    """Produces a payment authorization bound to a 402 challenge."""

    def sign(self, challenge: Dict[str, Any]) -> Union[Dict[str, Any], str]:
        ...


class Transport(Protocol):
    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        ...


def parse_challenge(response: requests.Response) -> Optional[Dict[str, Any]]:
    """Return the JSON challenge of a 402 response, or None if it has none."""
    try:
        challenge = response.json()
    except ValueError:
        return None
    if not isinstance(challenge, dict) or not challenge.get("accepts"):
        return None
    return challenge


class PaymentGatedTransport:
    """
    Wraps a transport so 402 challenges are paid automatically.

    - The request goes out unmodified first
    - On 402 with a challenge, the signer authorizes it and the request is
      retried once with an X-PAYMENT header
    - A second 402 raises PaymentRequired; it is never retried again
    - Without a signer the original 402 response is returned untouched
    - With a deadline, both sends share it: each one gets the time left
      as its socket timeout and the retry is skipped once it has passed

    ``attempts`` counts outbound sends over the transport's lifetime and
    is safe to read while other threads send.
    """

    def __init__(self, transport: Transport, signer: Optional[Signer] = None):
        self.transport = transport
        self.signer = signer
        self.attempts = 0
        self._lock = threading.Lock()

    def _send(self, request: requests.PreparedRequest, deadline: Optional[Deadline],
              **kwargs: Any) -> requests.Response:
        if deadline is not None:
            kwargs["timeout"] = deadline.timeout_for(kwargs.get("timeout") or deadline.seconds)
        with self._lock:
            self.attempts += 1
        return self.transport.send(request, **kwargs)

    def send(self, request: requests.PreparedRequest, deadline: Optional[Deadline] = None,
             **kwargs: Any) -> requests.Response:
        response = self._send(request, deadline, **kwargs)
        if response.status_code != PAYMENT_REQUIRED_STATUS or self.signer is None:
            return response

        challenge = parse_challenge(response)
        if challenge is None:
            raise PaymentRequired("Payment required but the challenge is unreadable")

        authorization = self.signer.sign(challenge)
        header = authorization if isinstance(authorization, str) else encode_payment_header(authorization)

        retry = request.copy()
        retry.headers[PAYMENT_HEADER] = header
        logger.info(f"Retrying {request.url} with payment")
        paid = self._send(retry, deadline, **kwargs)

        if paid.status_code == PAYMENT_REQUIRED_STATUS:
            raise PaymentRequired(
                "Payment was not accepted",
                parse_challenge(paid) or challenge,
            )
        return paid
