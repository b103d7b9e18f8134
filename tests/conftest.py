from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from tlon_mcp.config import clear_settings_cache
from tlon_mcp.service import DmService
from tlon_mcp.session import Poke, Scry

OWN_SHIP = "~zod"
FIXED_NOW = 1_700_000_000_000


class FakeSession:
    """In-memory stand-in for a ship connection that records every call."""

    def __init__(
        self,
        *,
        contacts: Any = None,
        history: Any = None,
        live: bool = True,
    ) -> None:
        self.url = "http://ship.test"
        self.live = live
        self.contacts = contacts if contacts is not None else {}
        self.history = history if history is not None else {}
        self.pokes: list[Poke] = []
        self.scries: list[Scry] = []
        self.whoami_calls = 0
        self.reconnects = 0
        self.closed = False
        self.whoami_error: Optional[Exception] = None
        self.reconnect_error: Optional[Exception] = None
        self.poke_error: Optional[Exception] = None
        self.scry_errors: dict[str, Exception] = {}

    async def whoami(self) -> str:
        self.whoami_calls += 1
        if self.whoami_error is not None:
            raise self.whoami_error
        return OWN_SHIP

    async def reconnect(self) -> None:
        self.reconnects += 1
        await asyncio.sleep(0)
        if self.reconnect_error is not None:
            raise self.reconnect_error
        self.whoami_error = None
        self.live = True

    async def invoke(self, action: Poke) -> None:
        if self.poke_error is not None:
            raise self.poke_error
        self.pokes.append(action)

    async def query(self, request: Scry) -> Any:
        self.scries.append(request)
        if request.app in self.scry_errors:
            raise self.scry_errors[request.app]
        if request.app == "contacts":
            return self.contacts
        return self.history

    async def close(self) -> None:
        self.closed = True

    @property
    def contact_scries(self) -> list[Scry]:
        return [scry for scry in self.scries if scry.app == "contacts"]

    @property
    def chat_scries(self) -> list[Scry]:
        return [scry for scry in self.scries if scry.app == "chat"]


@pytest.fixture
def isolated_env(monkeypatch):
    """Pin ship/transport settings and reset the settings cache around the test."""
    monkeypatch.setenv("APP_ENVIRONMENT", "test")
    monkeypatch.setenv("URBIT_SHIP", "zod")
    monkeypatch.setenv("URBIT_CODE", "lidlut-tabwed-pillex-ridrup")
    monkeypatch.setenv("URBIT_HOST", "http://ship.test")
    monkeypatch.setenv("TOOLS_LOG_ENABLED", "false")
    monkeypatch.delenv("HTTP_BEARER_TOKEN", raising=False)
    clear_settings_cache()
    try:
        yield
    finally:
        clear_settings_cache()


@pytest.fixture
def contacts() -> dict[str, Any]:
    return {
        "zod": None,
        "sampel-palnet": {"nickname": "Pal", "email": "Pal@Example.com", "phone": "+1 555-0100"},
        "~nec": {"nickname": "Nec", "bio": "hello"},
    }


@pytest.fixture
def fake_session(contacts) -> FakeSession:
    return FakeSession(contacts=contacts)


@pytest.fixture
def service(fake_session) -> DmService:
    return DmService(fake_session, OWN_SHIP, clock=lambda: FIXED_NOW)


@pytest.fixture
def make_session():
    """Factory for extra :class:`FakeSession` instances."""
    return FakeSession
