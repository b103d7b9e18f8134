import pytest
from httpx import ASGITransport, AsyncClient

from tlon_mcp.config import clear_settings_cache, get_settings
from tlon_mcp.errors import SessionError, SessionErrorKind
from tlon_mcp.http import build_http_app


def _app(service):
    return build_http_app(get_settings(), service=service)


@pytest.mark.asyncio
async def test_liveness(isolated_env, service):
    transport = ASGITransport(app=_app(service))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        r = await client.get("/health/liveness")
    assert r.status_code == 200
    assert r.json() == {"status": "alive"}


@pytest.mark.asyncio
async def test_readiness_checks_the_ship(isolated_env, service, fake_session):
    transport = ASGITransport(app=_app(service))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        r = await client.get("/health/readiness")
        assert r.status_code == 200
        assert r.json() == {"status": "ready", "ship": "~zod"}

        fake_session.whoami_error = SessionError(SessionErrorKind.TRANSPORT, "refused")
        fake_session.reconnect_error = SessionError(SessionErrorKind.LOGIN_REJECTED, "bad code")
        r = await client.get("/health/readiness")
    assert r.status_code == 503
    assert r.json()["detail"] == "Connection to ship lost and reconnection failed"


@pytest.mark.asyncio
async def test_bearer_token_protects_everything_but_health(isolated_env, monkeypatch, service):
    monkeypatch.setenv("HTTP_BEARER_TOKEN", "token123")
    clear_settings_cache()

    transport = ASGITransport(app=_app(service))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        r = await client.get("/metrics/tools")
        assert r.status_code == 401

        r = await client.get("/metrics/tools", headers={"Authorization": "Bearer wrong"})
        assert r.status_code == 401

        r = await client.get("/metrics/tools", headers={"Authorization": "Bearer token123"})
        assert r.status_code == 200
        assert "tools" in r.json()

        r = await client.get("/health/liveness")
        assert r.status_code == 200
