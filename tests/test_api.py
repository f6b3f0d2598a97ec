"""
Service endpoints: validation, payment gating, estimates and rendering.
"""
import pytest
from fastapi.testclient import TestClient

from llm_txt.context import build_context
from llm_txt.main import app, get_context
from llm_txt.payments import PAYMENT_HEADER, PAYMENT_RESPONSE_HEADER, decode_payment_header, encode_payment_header

from .conftest import StubFacilitator, install_alice, make_settings

PAYMENT = encode_payment_header({
    "x402Version": 1,
    "scheme": "exact",
    "network": "base-sepolia",
    "payload": {"signature": "0xsig", "authorization": {"from": "0xpayer"}},
})


@pytest.fixture
def client(context):
    app.dependency_overrides[get_context] = lambda: context
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health_endpoint_returns_ok(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_root_without_query_redirects_home(client):
    response = client.get("/", follow_redirects=False)
    assert response.status_code in (302, 307)
    assert response.headers["location"] == "https://llm-fid.fun"


@pytest.mark.parametrize(
    "query,message",
    [
        ("limit=5", "Error: fid or username required"),
        ("fid=abc", "Error: Invalid FID"),
        ("fid=0", "Error: Invalid FID"),
        ("username=alice&limit=-1", "Error: Invalid limit"),
        ("username=alice&limit=ten", "Error: Invalid limit"),
        ("username=alice&sortOrder=sideways", "Error: Invalid sortOrder (must be 'newest' or 'oldest')"),
    ],
)
def test_invalid_parameters_return_400(client, query, message):
    response = client.get(f"/?{query}")
    assert response.status_code == 400
    assert response.text == message
    assert response.headers["content-type"].startswith("text/plain")


def test_free_request_returns_text(client, transport):
    install_alice(transport)

    response = client.get("/?username=Alice&limit=3&includeReactions=true")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    text = response.text
    assert text.startswith("Farcaster User Profile")
    assert "Username: alice" in text
    assert "[1] " in text and "[3] " in text and "[4] " not in text
    assert "- Likes: 3" in text
    assert PAYMENT_RESPONSE_HEADER not in response.headers


def test_paid_request_without_payment_gets_challenge(client, transport, facilitator):
    install_alice(transport)

    response = client.get("/?username=alice&limit=100")

    assert response.status_code == 402
    challenge = response.json()
    assert challenge["x402Version"] == 1
    requirements = challenge["accepts"][0]
    assert requirements["scheme"] == "exact"
    assert requirements["maxAmountRequired"] == "10000"
    assert requirements["payTo"] == "0x1111111111111111111111111111111111111111"
    assert "/?username=alice&limit=100" in requirements["resource"]
    # nothing fetched from the provider before payment
    assert "/v2/farcaster/feed/user/casts" not in transport.paths()
    assert facilitator.verified == []


def test_paid_request_with_payment_is_served_and_settled(client, transport, facilitator):
    install_alice(transport)

    response = client.get("/?username=alice&limit=20", headers={PAYMENT_HEADER: PAYMENT})

    assert response.status_code == 200
    assert "[20] " in response.text
    settlement = decode_payment_header(response.headers[PAYMENT_RESPONSE_HEADER])
    assert settlement["success"] is True
    assert len(facilitator.verified) == 1
    assert len(facilitator.settled) == 1


def test_rejected_payment_gets_challenge(transport, clock):
    install_alice(transport)
    context = build_context(
        make_settings(), session=transport, clock=clock, facilitator=StubFacilitator(valid=False),
    )
    app.dependency_overrides[get_context] = lambda: context
    try:
        response = TestClient(app).get("/?username=alice&all=true", headers={PAYMENT_HEADER: PAYMENT})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 402
    assert response.json()["error"] == "invalid_exact_evm_payload_signature"


def test_malformed_payment_header_gets_challenge(client, transport):
    install_alice(transport)

    response = client.get("/?username=alice&limit=100", headers={PAYMENT_HEADER: "not base64!"})

    assert response.status_code == 402
    assert response.json()["accepts"]


def test_failed_fetch_is_not_settled(client, transport, facilitator):
    install_alice(transport)
    transport.route("/v2/farcaster/feed/user/casts", (500, {"message": "down"}))

    response = client.get("/?username=alice&limit=20", headers={PAYMENT_HEADER: PAYMENT})

    assert response.status_code == 502
    assert response.text.startswith("Error: ")
    assert len(facilitator.verified) == 1
    assert facilitator.settled == []


def test_unknown_user_returns_404(client, transport):
    transport.route("/v2/farcaster/user/by_username", (404, {"message": "not found"}))

    response = client.get("/?username=nobody&limit=5")

    assert response.status_code == 404
    assert response.text == "Error: User not found: nobody"


def test_estimate_for_free_request(client):
    response = client.get("/estimate?username=alice&limit=5")
    assert response.json() == {"price": "$0", "isFree": True, "countHint": None}


def test_estimate_for_paid_request(client, transport):
    response = client.get("/estimate?username=alice&limit=100&includeReplies=true")

    assert response.status_code == 200
    assert response.json() == {"price": "$0.0150", "isFree": False, "countHint": None}
    assert transport.calls == []


def test_estimate_fetch_all_uses_count_hint_and_is_cached(client, transport):
    transport.route("/xrpc/com.atproto.identity.resolveHandle", {"did": "did:plc:alice"})
    transport.route("/xrpc/app.bsky.actor.getProfile", {
        "did": "did:plc:alice", "handle": "alice.bsky.social", "postsCount": 321,
    })

    first = client.get("/bsky/estimate?handle=alice.bsky.social&all=true")
    second = client.get("/bsky/estimate?handle=Alice.bsky.social&all=true&sortOrder=oldest")

    assert first.json() == {"price": "$0.0321", "isFree": False, "countHint": 321}
    assert second.json() == first.json()
    assert transport.paths().count("/xrpc/app.bsky.actor.getProfile") == 1


def test_estimate_errors_are_json(client):
    response = client.get("/rss/estimate")
    assert response.status_code == 400
    assert response.json() == {"error": "url required"}


def test_git_free_request_renders_repository(client, transport):
    transport.route("/repos/octo/demo", {
        "name": "demo", "full_name": "octo/demo", "html_url": "https://github.com/octo/demo",
        "default_branch": "main", "owner": {"login": "octo"},
    })
    transport.route("/repos/octo/demo/commits/main", {"sha": "c0ffee"})
    tree = {"sha": "7ree0b1", "tree": [{"path": "main.py", "type": "blob", "size": 10, "sha": "x"}]}
    transport.route("/repos/octo/demo/git/trees/main", tree)
    transport.route("/repos/octo/demo/git/trees/c0ffee", tree)

    response = client.get("/git?url=https://github.com/octo/demo")

    assert response.status_code == 200
    assert "Repository: octo/demo" in response.text
    assert "main.py (10 bytes)" in response.text


def test_cache_stats(client):
    data = client.get("/cache/stats").json()
    assert "hit_rate_percent" in data["cache"]
    assert data["rate_limiter"]["global_ceiling"] == 450
