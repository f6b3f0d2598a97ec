"""
Shared fixtures: a fake clock, a scripted upstream transport and an
isolated application context built on both.
"""
import json
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from config.settings import Settings
from llm_txt.context import build_context


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.current = start
        self.slept: List[float] = []
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self.current

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.slept.append(seconds)
            if seconds > 0:
                self.current += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.current += seconds


def make_response(request: requests.PreparedRequest, status: int = 200,
                  body: Any = None, headers: Optional[Dict[str, str]] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.request = request
    response.url = request.url
    response.encoding = "utf-8"
    if isinstance(body, (dict, list)):
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    elif isinstance(body, str):
        response._content = body.encode("utf-8")
    elif isinstance(body, bytes):
        response._content = body
    else:
        response._content = b""
    response.headers.update(headers or {})
    return response


def query_of(request: requests.PreparedRequest) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}


Handler = Callable[[requests.PreparedRequest], Any]


class FakeTransport:
    """
    Stands in for requests.Session.

    Routes are keyed by URL path. A route is either a body (dict, str,
    bytes), a ``(status, body)`` tuple or a callable taking the
    PreparedRequest and returning any of those or a Response. Every call
    is recorded with the clock time it was made.
    """

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.routes: Dict[str, Any] = {}
        self.requests: List[requests.PreparedRequest] = []
        self.calls: List[Tuple[float, str]] = []
        self._lock = threading.Lock()

    def route(self, path: str, handler: Any) -> None:
        self.routes[path] = handler

    def paths(self) -> List[str]:
        return [path for _, path in self.calls]

    def send(self, request: requests.PreparedRequest, **kwargs: Any) -> requests.Response:
        path = urlparse(request.url).path
        with self._lock:
            self.requests.append(request)
            self.calls.append((self.clock.now() if self.clock else 0.0, path))

        handler = self.routes.get(path)
        if handler is None:
            return make_response(request, 404, {"error": f"no route for {path}"})
        result = handler(request) if callable(handler) else handler
        if isinstance(result, requests.Response):
            return result
        if isinstance(result, tuple):
            status, body = result
            return make_response(request, status, body)
        return make_response(request, 200, result)


class StubFacilitator:
    """x402 facilitator that accepts or rejects everything."""

    def __init__(self, valid: bool = True, settles: bool = True):
        self.valid = valid
        self.settles = settles
        self.verified: List[Dict[str, Any]] = []
        self.settled: List[Dict[str, Any]] = []

    def verify(self, payload: Dict[str, Any], requirements: Dict[str, Any]) -> Dict[str, Any]:
        self.verified.append(payload)
        if not self.valid:
            return {"isValid": False, "invalidReason": "invalid_exact_evm_payload_signature"}
        return {"isValid": True, "payer": "0xpayer"}

    def settle(self, payload: Dict[str, Any], requirements: Dict[str, Any]) -> Dict[str, Any]:
        self.settled.append(payload)
        if not self.settles:
            return {"success": False, "errorReason": "insufficient_funds"}
        return {"success": True, "transaction": "0xtx", "network": requirements["network"]}


def make_settings(**overrides: Any) -> Settings:
    values = dict(
        neynar_api_key="test-key",
        github_token=None,
        payment_enabled=True,
        pay_to_address="0x1111111111111111111111111111111111111111",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ===== UPSTREAM PAYLOADS =====

def neynar_cast(hash: str, timestamp: str, parent_hash: Optional[str] = None,
                text: str = "", username: str = "alice", fid: int = 42) -> Dict[str, Any]:
    return {
        "hash": hash,
        "thread_hash": hash,
        "parent_hash": parent_hash,
        "author": {"fid": fid, "username": username},
        "text": text or f"cast {hash}",
        "timestamp": timestamp,
        "embeds": [],
        "reactions": {"likes_count": 3, "recasts_count": 1},
    }


def neynar_user(fid: int = 42, username: str = "alice") -> Dict[str, Any]:
    return {
        "fid": fid,
        "username": username,
        "display_name": username.title(),
        "pfp_url": f"https://img.example/{username}.png",
        "follower_count": 10,
        "following_count": 5,
        "profile": {"bio": {"text": f"I am {username}"}},
    }


def timestamp(index: int) -> str:
    """ISO timestamps that sort newest-first for increasing index."""
    minute = 59 - (index % 60)
    hour = 23 - (index // 60) % 24
    day = 28 - index // 1440
    return f"2024-01-{day:02d}T{hour:02d}:{minute:02d}:00Z"


ALICE_PAGE_SIZE = 150
ALICE_PAGES = 3


def alice_casts() -> List[Dict[str, Any]]:
    """450 casts newest-first; every third one is a reply."""
    return [
        neynar_cast(
            f"0x{i:04x}",
            timestamp(i),
            parent_hash=f"0xparent{i}" if i % 3 == 0 else None,
        )
        for i in range(ALICE_PAGE_SIZE * ALICE_PAGES)
    ]


def install_alice(transport: FakeTransport, casts: Optional[List[Dict[str, Any]]] = None) -> None:
    """Route a three-page cast history for @alice (fid 42)."""
    casts = casts if casts is not None else alice_casts()

    def user_casts(request):
        cursor = query_of(request).get("cursor")
        page = int(cursor) if cursor else 0
        chunk = casts[page * ALICE_PAGE_SIZE:(page + 1) * ALICE_PAGE_SIZE]
        next_cursor = str(page + 1) if (page + 1) * ALICE_PAGE_SIZE < len(casts) else None
        return {"casts": chunk, "next": {"cursor": next_cursor}}

    transport.route("/v2/farcaster/user/by_username", {"user": {"fid": 42}})
    transport.route("/v2/farcaster/user/bulk", {"users": [neynar_user()]})
    transport.route("/v2/farcaster/feed/user/casts", user_casts)


# ===== FIXTURES =====

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport(clock: FakeClock) -> FakeTransport:
    return FakeTransport(clock)


@pytest.fixture
def facilitator() -> StubFacilitator:
    return StubFacilitator()


@pytest.fixture
def context(transport, clock, facilitator):
    return build_context(make_settings(), session=transport, clock=clock, facilitator=facilitator)
