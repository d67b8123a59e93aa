from datetime import timedelta

import httpx
import pytest
import structlog
from starlette.requests import Request

from main import app
from shared.security import (
    actor_or_ip, create_access_token, get_current_admin, verify_access_token, verify_api_key,
)


def _request(headers):
    return Request({
        "type": "http",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": ("10.0.0.7", 5000),
    })


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://printshop.test") as client:
        yield client


def test_internal_key_check():
    assert verify_api_key("test-internal-key")
    assert not verify_api_key("test-internal-key ")
    assert not verify_api_key("")
    assert not verify_api_key(None)


def test_admin_token_round_trip():
    claims = verify_access_token(create_access_token({"sub": "ops@printshop.test"}))
    assert claims["sub"] == "ops@printshop.test"
    assert claims["role"] == "admin"


def test_expired_and_tampered_tokens_are_rejected():
    expired = create_access_token({"sub": "ops"}, expires_delta=timedelta(seconds=-5))
    assert verify_access_token(expired) is None

    token = create_access_token({"sub": "ops"})
    assert verify_access_token(token[:-2] + ("AA" if token[-2:] != "AA" else "BB")) is None


def test_rate_limit_key_prefers_admin_subject():
    token = create_access_token({"sub": "ops"})
    assert actor_or_ip(_request({"Authorization": f"Bearer {token}"})) == "admin:ops"
    assert actor_or_ip(_request({"Authorization": "Bearer garbage"})) == "ip:10.0.0.7"
    assert actor_or_ip(_request({})) == "ip:10.0.0.7"


async def test_token_without_admin_role_is_forbidden(client):
    token = create_access_token({"sub": "customer@example.test", "role": "customer"})
    resp = await client.get("/printing/queue/status", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 403


async def test_expired_token_is_unauthorized(client):
    token = create_access_token({"sub": "ops"}, expires_delta=timedelta(seconds=-5))
    resp = await client.get("/printing/queue/status", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


async def test_actor_is_bound_to_logs_only_during_the_request():
    token = create_access_token({"sub": "ops"})
    request = _request({"Authorization": f"Bearer {token}"})
    admin = get_current_admin(request, token)

    assert await admin.__anext__() == "ops"
    assert request.state.actor == "ops"
    assert structlog.contextvars.get_contextvars()["actor"] == "ops"

    with pytest.raises(StopAsyncIteration):
        await admin.__anext__()
    assert "actor" not in structlog.contextvars.get_contextvars()


@pytest.mark.usefixtures("database")
async def test_admin_request_leaves_no_actor_behind(client):
    token = create_access_token({"sub": "ops"})
    resp = await client.get("/printing/queue/status", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert "actor" not in structlog.contextvars.get_contextvars()
