"""
Client-side payment retry.
"""
import pytest
import requests

from llm_txt.errors import PaymentRequired
from llm_txt.payments import PAYMENT_HEADER, decode_payment_header
from llm_txt.transport import PaymentGatedTransport

from .conftest import FakeTransport

CHALLENGE = {
    "x402Version": 1,
    "error": "X-PAYMENT header is required",
    "accepts": [{"scheme": "exact", "network": "base-sepolia", "maxAmountRequired": "15000"}],
}


class RecordingSigner:
    def __init__(self):
        self.challenges = []

    def sign(self, challenge):
        self.challenges.append(challenge)
        return {"x402Version": 1, "scheme": "exact", "payload": {"signature": "0xsig"}}


def paid_route(request):
    if PAYMENT_HEADER in request.headers:
        return 200, "paid content"
    return 402, CHALLENGE


def prepared(url="https://api.test.com/?username=alice&limit=100"):
    return requests.Request("GET", url).prepare()


def test_paid_request_takes_exactly_two_attempts():
    upstream = FakeTransport()
    upstream.route("/", paid_route)
    signer = RecordingSigner()
    transport = PaymentGatedTransport(upstream, signer)

    response = transport.send(prepared())

    assert response.status_code == 200
    assert response.text == "paid content"
    assert transport.attempts == 2
    assert len(upstream.requests) == 2
    assert PAYMENT_HEADER not in upstream.requests[0].headers
    header = upstream.requests[1].headers[PAYMENT_HEADER]
    assert decode_payment_header(header)["payload"]["signature"] == "0xsig"
    assert signer.challenges == [CHALLENGE]


def test_second_402_raises_without_further_retries():
    upstream = FakeTransport()
    upstream.route("/", (402, CHALLENGE))
    transport = PaymentGatedTransport(upstream, RecordingSigner())

    with pytest.raises(PaymentRequired) as excinfo:
        transport.send(prepared())

    assert transport.attempts == 2
    assert excinfo.value.challenge == CHALLENGE


def test_without_signer_402_is_returned_untouched():
    upstream = FakeTransport()
    upstream.route("/", paid_route)
    transport = PaymentGatedTransport(upstream)

    response = transport.send(prepared())

    assert response.status_code == 402
    assert response.json() == CHALLENGE
    assert transport.attempts == 1


def test_free_request_is_sent_once():
    upstream = FakeTransport()
    upstream.route("/", "free content")
    transport = PaymentGatedTransport(upstream, RecordingSigner())

    response = transport.send(prepared())

    assert response.text == "free content"
    assert transport.attempts == 1


def test_unreadable_challenge_raises():
    upstream = FakeTransport()
    upstream.route("/", (402, "pay me"))
    transport = PaymentGatedTransport(upstream, RecordingSigner())

    with pytest.raises(PaymentRequired):
        transport.send(prepared())
    assert transport.attempts == 1


def test_original_request_is_not_mutated():
    upstream = FakeTransport()
    upstream.route("/", paid_route)
    request = prepared()

    PaymentGatedTransport(upstream, RecordingSigner()).send(request)

    assert PAYMENT_HEADER not in request.headers
