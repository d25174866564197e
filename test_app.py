import logging
import re
import time
from datetime import datetime
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient

import main

from config import settings
from errors import EdgeError, ErrorKind, GENERIC_SERVER_ERROR
from rate_limit import MemoryCounterStore


# ======================================================
# Routes
# ======================================================

def test_root_status(client):
    resp = client.get("/")

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/json")

    body = resp.json()
    assert set(body) == {"status", "message", "uptime", "timestamp"}
    assert body["status"] == "OK"
    assert settings.REQUIRED_RUNTIME_VERSION in body["message"]
    assert re.fullmatch(r"\d+s", body["uptime"])
    assert body["timestamp"].endswith("Z")
    datetime.fromisoformat(body["timestamp"].replace("Z", "+00:00"))


def test_health_exact_body(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {
        "status": "healthy",
        "version": settings.REQUIRED_RUNTIME_VERSION,
    }


@patch("main.fetch_joke", new_callable=AsyncMock)
def test_joke_wraps_payload(mock_fetch, client):
    payload = {"id": 7, "type": "general", "setup": "Why?", "punchline": "Because."}
    mock_fetch.return_value = payload

    resp = client.get("/api/joke")

    assert resp.status_code == 200
    assert resp.json() == {"joke": payload}
    mock_fetch.assert_awaited_once()


def test_unknown_route_falls_through(client):
    resp = client.get("/nope")
    assert resp.status_code == 404


# ======================================================
# Error sink
# ======================================================

@patch("main.fetch_joke", new_callable=AsyncMock)
def test_upstream_failure_is_opaque(mock_fetch, client, caplog):
    mock_fetch.side_effect = EdgeError(
        ErrorKind.UPSTREAM_FAILURE,
        "Upstream service unreachable: connection refused to 10.0.0.3",
    )

    with caplog.at_level(logging.ERROR, logger="edge.backend"):
        resp = client.get("/api/joke")

    assert resp.status_code == 500
    assert resp.json() == {"error": GENERIC_SERVER_ERROR}
    assert "10.0.0.3" not in resp.text

    # Operators still see the detail
    assert "connection refused to 10.0.0.3" in caplog.text


@patch("main.fetch_joke", new_callable=AsyncMock)
def test_unexpected_exception_is_opaque(mock_fetch, client):
    mock_fetch.side_effect = RuntimeError("KeyError deep in handler")

    resp = client.get("/api/joke")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Something went wrong on the server."}
    assert "KeyError" not in resp.text


@patch("main.fetch_joke", new_callable=AsyncMock)
def test_error_response_keeps_pipeline_headers(mock_fetch, client):
    mock_fetch.side_effect = RuntimeError("boom")

    resp = client.get("/api/joke")

    assert resp.status_code == 500
    assert resp.headers["access-control-allow-origin"] == "*"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert "ratelimit-remaining" in resp.headers


# ======================================================
# Body parser
# ======================================================

def test_malformed_json_is_client_error(client):
    resp = client.post(
        "/",
        content=b'{"broken": ',
        headers={"content-type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "Malformed JSON body."}


def test_json_scalar_rejected(client):
    resp = client.put(
        "/health",
        content=b'"just a string"',
        headers={"content-type": "application/json; charset=utf-8"},
    )
    assert resp.status_code == 400


def test_oversized_json_body(client):
    big = b'{"x": "' + b"a" * (settings.MAX_BODY_BYTES + 1) + b'"}'

    resp = client.post("/", content=big, headers={"content-type": "application/json"})

    assert resp.status_code == 413
    assert resp.json() == {"error": "Request body too large."}


def test_valid_json_reaches_router(client):
    # No POST handler: framework default answers, not the body parser
    resp = client.post("/", json={"hello": "world"})
    assert resp.status_code == 405


def test_non_json_body_is_ignored(client):
    resp = client.post(
        "/",
        content=b"{not json at all",
        headers={"content-type": "text/plain"},
    )
    assert resp.status_code == 405


def test_body_parser_rejection_skips_later_stages(client):
    resp = client.post(
        "/",
        content=b"{",
        headers={"content-type": "application/json"},
    )

    assert resp.status_code == 400
    assert "access-control-allow-origin" not in resp.headers
    assert "ratelimit-limit" not in resp.headers


# ======================================================
# CORS
# ======================================================

def test_cors_any_origin(client):
    resp = client.get("/health", headers={"Origin": "https://evil.example"})

    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"


def test_cors_preflight(client):
    resp = client.options(
        "/api/joke",
        headers={
            "Origin": "https://app.example",
            "Access-Control-Request-Method": "PATCH",
            "Access-Control-Request-Headers": "content-type,x-trace",
        },
    )

    assert resp.status_code == 204
    assert resp.content == b""
    assert resp.headers["access-control-allow-origin"] == "*"

    allowed = resp.headers["access-control-allow-methods"].split(",")
    assert allowed == ["GET", "POST", "PUT", "DELETE"]
    assert "PATCH" not in allowed

    assert resp.headers["access-control-allow-headers"] == "content-type,x-trace"
    assert "Access-Control-Request-Headers" in resp.headers["vary"]


def test_cors_preflight_not_rate_limited(client):
    resp = client.options("/health", headers={"Origin": "https://app.example"})

    assert resp.status_code == 204
    assert "ratelimit-limit" not in resp.headers


# ======================================================
# Security headers
# ======================================================

def test_security_headers_present(client):
    resp = client.get("/health")

    assert resp.headers["x-frame-options"] == "SAMEORIGIN"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["referrer-policy"] == "no-referrer"
    assert resp.headers["strict-transport-security"].startswith("max-age=31536000")
    assert resp.headers["cross-origin-opener-policy"] == "same-origin"
    assert resp.headers["x-xss-protection"] == "0"


def test_content_security_policy_disabled(client):
    resp = client.get("/")
    assert "content-security-policy" not in resp.headers


# ======================================================
# Rate limiting
# ======================================================

def test_rate_limit_allows_quota_then_blocks(client):
    limit = settings.RATE_LIMIT_MAX

    for i in range(limit):
        resp = client.get("/health")
        assert resp.status_code == 200, f"request {i + 1} was rejected"

    resp = client.get("/health")

    assert resp.status_code == 429
    assert resp.json() == {"error": "Too many requests, please try again later."}
    assert resp.headers["ratelimit-limit"] == str(limit)
    assert resp.headers["ratelimit-remaining"] == "0"
    assert int(resp.headers["ratelimit-reset"]) > 0
    assert "retry-after" in resp.headers

    # Short-circuit responses still carry CORS and hardening headers
    assert resp.headers["access-control-allow-origin"] == "*"
    assert resp.headers["x-frame-options"] == "SAMEORIGIN"


def test_rate_limit_headers_on_success(client):
    resp = client.get("/health")

    assert resp.headers["ratelimit-limit"] == str(settings.RATE_LIMIT_MAX)
    assert resp.headers["ratelimit-remaining"] == str(settings.RATE_LIMIT_MAX - 1)
    assert resp.headers["ratelimit-policy"] == (
        f"{settings.RATE_LIMIT_MAX};w={settings.RATE_LIMIT_WINDOW_SECONDS}"
    )
    assert not any(h.lower().startswith("x-ratelimit") for h in resp.headers)


def test_rate_limit_resets_after_window(client, clock):
    for _ in range(settings.RATE_LIMIT_MAX + 1):
        client.get("/health")

    assert client.get("/health").status_code == 429

    clock.advance(settings.RATE_LIMIT_WINDOW_SECONDS)

    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.headers["ratelimit-remaining"] == str(settings.RATE_LIMIT_MAX - 1)


@patch("main.fetch_joke", new_callable=AsyncMock)
def test_rate_limited_request_never_reaches_handler(mock_fetch, client):
    for _ in range(settings.RATE_LIMIT_MAX):
        client.get("/health")

    resp = client.get("/api/joke")

    assert resp.status_code == 429
    mock_fetch.assert_not_awaited()


# ======================================================
# App factory
# ======================================================

def test_each_app_gets_its_own_counters(client):
    for _ in range(settings.RATE_LIMIT_MAX + 1):
        client.get("/health")
    assert client.get("/health").status_code == 429

    other = TestClient(main.create_app(store=MemoryCounterStore()))
    assert other.get("/health").status_code == 200


def test_app_exposes_injected_store(store):
    app = main.create_app(store=store)
    assert app.state.limiter.store is store


def test_joke_route_documents_error_shape(client):
    schema = client.get("/openapi.json").json()

    responses = schema["paths"]["/api/joke"]["get"]["responses"]
    assert responses["500"]["content"]["application/json"]["schema"]["$ref"].endswith(
        "/ErrorResponse"
    )


def test_uptime_counts_from_start_time(client, monkeypatch):
    monkeypatch.setattr(main, "START_TIME", time.monotonic() - 42.2)

    resp = client.get("/")

    assert resp.json()["uptime"] == "42s"
