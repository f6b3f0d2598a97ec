"""
Client SDK: URL building, local pricing helpers, estimates and fetch.
"""
import threading

import pytest
import requests

from llm_txt.client import LlmTxtClient
from llm_txt.errors import InvalidParameter, Timeout
from llm_txt.models import Provider, RequestParams
from llm_txt.payments import PAYMENT_HEADER

from .conftest import FakeClock, FakeTransport

BASE_URL = "https://api.test.com"


def make_client(provider=Provider.FARCASTER, **kwargs):
    kwargs.setdefault("session", FakeTransport())
    return LlmTxtClient(provider, base_url=BASE_URL, **kwargs)


def test_custom_base_url():
    client = LlmTxtClient(Provider.FARCASTER, base_url="https://custom.api.com/")
    assert client.build_url(username="test").startswith("https://custom.api.com?")


def test_build_url_username():
    assert make_client().build_url(username="vitalik") == "https://api.test.com?username=vitalik"


def test_build_url_fid():
    assert make_client().build_url(fid=3) == "https://api.test.com?fid=3"


def test_build_url_normalizes_handle():
    assert make_client().build_url(username="@VitaliK") == "https://api.test.com?username=vitalik"


def test_build_url_limit():
    assert "limit=100" in make_client().build_url(username="vitalik", limit=100)


def test_build_url_all_drops_limit():
    url = make_client().build_url(username="vitalik", limit=100, all=True)
    assert "all=true" in url
    assert "limit=" not in url


def test_build_url_flags():
    url = make_client().build_url(
        username="vitalik",
        includeReplies=True,
        includeParents=True,
        includeReactions=True,
        sortOrder="oldest",
    )
    assert "includeReplies=true" in url
    assert "includeParents=true" in url
    assert "includeReactions=true" in url
    assert "sortOrder=oldest" in url


def test_build_url_omits_default_sort_order():
    assert "sortOrder" not in make_client().build_url(username="vitalik", sortOrder="newest")


def test_build_url_other_providers():
    assert make_client(Provider.BLUESKY).build_url(handle="Alice.bsky.social") == (
        "https://api.test.com/bsky?handle=alice.bsky.social"
    )
    assert make_client(Provider.GIT).build_url(url="https://github.com/o/r", includeTree=True) == (
        "https://api.test.com/git?url=https%3A%2F%2Fgithub.com%2Fo%2Fr&includeTree=true"
    )


def test_build_url_requires_exactly_one_identifier():
    with pytest.raises(InvalidParameter):
        make_client().build_url(limit=5)
    with pytest.raises(InvalidParameter):
        make_client().build_url(username="a", fid=1)


def test_params_for_other_provider_rejected():
    params = RequestParams.from_options(Provider.RSS, url="https://example.com/feed")
    with pytest.raises(InvalidParameter):
        make_client().build_url(params)


@pytest.mark.parametrize(
    "options,expected",
    [
        (dict(limit=10), True),
        (dict(limit=5), True),
        (dict(), False),
        (dict(limit=10, includeReplies=True), False),
        (dict(limit=10, includeParents=True), False),
        (dict(all=True), False),
        (dict(limit=11), False),
        (dict(limit=10, includeReactions=True), True),
    ],
)
def test_is_free_tier(options, expected):
    assert make_client().is_free_tier(username="test", **options) is expected


def test_free_estimate_needs_no_round_trip():
    session = FakeTransport()
    estimate = make_client(session=session).get_server_estimate(username="test", limit=5)

    assert estimate.price == "$0"
    assert estimate.is_free is True
    assert session.requests == []


def test_paid_estimate_is_fetched_and_cached():
    session = FakeTransport()
    session.route("/estimate", {"price": "$0.0100", "isFree": False, "countHint": None})
    client = make_client(session=session, clock=FakeClock())

    first = client.get_server_estimate(username="test", limit=100)
    second = client.get_server_estimate(username="TEST", limit=100, sortOrder="oldest")

    assert first.price == "$0.0100"
    assert first.is_free is False
    assert second == first
    assert len(session.requests) == 1
    assert session.requests[0].url.startswith("https://api.test.com/estimate?username=test")


def test_estimate_cache_expires():
    session = FakeTransport()
    session.route("/estimate", {"price": "$0.0100", "isFree": False, "countHint": None})
    clock = FakeClock()
    client = make_client(session=session, clock=clock)

    client.get_server_estimate(username="test", limit=100)
    clock.advance(61)
    client.get_server_estimate(username="test", limit=100)

    assert len(session.requests) == 2


def test_estimate_error_returns_none():
    session = FakeTransport()
    session.route("/estimate", (500, "Error: boom"))
    assert make_client(session=session).get_server_estimate(username="test", all=True) is None


def test_fetch_free_request():
    session = FakeTransport()
    session.route("/", "Farcaster User Profile\n")
    result = make_client(session=session).fetch(username="test", limit=5)

    assert result.status == 200
    assert result.text.startswith("Farcaster User Profile")


def test_fetch_paid_request_pays_once():
    session = FakeTransport()

    def route(request):
        if PAYMENT_HEADER in request.headers:
            return 200, "paid"
        return 402, {"x402Version": 1, "error": "X-PAYMENT header is required", "accepts": [{}]}

    session.route("/", route)

    class Signer:
        def sign(self, challenge):
            return "c2lnbmVk"

    client = make_client(session=session, signer=Signer())
    result = client.fetch(username="test", limit=100)

    assert result.status == 200
    assert result.text == "paid"
    assert client.transport.attempts == 2
    assert session.requests[1].headers[PAYMENT_HEADER] == "c2lnbmVk"


def test_fetch_paid_request_without_signer_returns_402():
    session = FakeTransport()
    session.route("/", (402, {"x402Version": 1, "error": "pay", "accepts": [{}]}))

    result = make_client(session=session).fetch(username="test", all=True)

    assert result.status == 402


def test_fetch_timeout():
    class SlowTransport(FakeTransport):
        def send(self, request, **kwargs):
            raise requests.Timeout("read timed out")

    with pytest.raises(Timeout):
        make_client(session=SlowTransport(), timeout=1).fetch(username="test")


CHALLENGE = {"x402Version": 1, "error": "X-PAYMENT header is required", "accepts": [{}]}


class StaticSigner:
    def sign(self, challenge):
        return "c2lnbmVk"


class TimedTransport(FakeTransport):
    """Records the socket timeout of every send and lets routes move the clock."""

    def __init__(self, clock):
        super().__init__(clock)
        self.timeouts = []

    def send(self, request, **kwargs):
        self.timeouts.append(kwargs.get("timeout"))
        return super().send(request, **kwargs)


def test_fetch_payment_retry_shares_one_deadline():
    clock = FakeClock()
    session = TimedTransport(clock)

    def route(request):
        if PAYMENT_HEADER in request.headers:
            return 200, "paid"
        clock.advance(4)
        return 402, CHALLENGE

    session.route("/", route)
    client = make_client(session=session, signer=StaticSigner(), clock=clock, timeout=10)

    result = client.fetch(username="test", limit=100)

    assert result.text == "paid"
    assert session.timeouts == [10, 6]


def test_fetch_deadline_spent_before_retry_raises_timeout():
    clock = FakeClock()
    session = TimedTransport(clock)

    def route(request):
        clock.advance(2)
        return 402, CHALLENGE

    session.route("/", route)
    client = make_client(session=session, signer=StaticSigner(), clock=clock, timeout=1)

    with pytest.raises(Timeout):
        client.fetch(username="test", limit=100)

    assert len(session.requests) == 1
    assert client.transport.attempts == 1


def test_fetch_slow_body_is_bounded_by_deadline():
    release = threading.Event()

    class TricklingTransport(FakeTransport):
        def send(self, request, **kwargs):
            release.wait(5)
            return super().send(request, **kwargs)

    client = make_client(session=TricklingTransport(), timeout=0.2)
    try:
        with pytest.raises(Timeout):
            client.fetch(username="test")
    finally:
        release.set()


def test_attempts_are_counted_across_threads():
    session = FakeTransport()
    session.route("/", "free content")
    client = make_client(session=session)

    threads = [
        threading.Thread(target=client.fetch, kwargs={"username": "test", "limit": 5})
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert client.transport.attempts == 8
