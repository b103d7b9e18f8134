"""HTTP session against a ship's Eyre interface: login, identity, poke and scry.

Only the calls the DM tools need are implemented. Pokes are considered
accepted once the channel ``PUT`` succeeds; the server-sent event stream that
carries acks is never opened.
"""

from __future__ import annotations

import itertools
import re
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
import structlog

from .errors import RemoteActionError, RemoteErrorKind, SessionError, SessionErrorKind
from .utils import normalize_identity, strip_sigil

_COOKIE_SHIP_RE = re.compile(r"urbauth-~([\w-]+)")


@dataclass(slots=True, frozen=True)
class Poke:
    app: str
    mark: str
    json: Any

    def describe(self) -> str:
        return f"poke {self.app}/{self.mark}"


@dataclass(slots=True, frozen=True)
class Scry:
    app: str
    path: str

    def describe(self) -> str:
        return f"scry {self.app}{self.path}"


@runtime_checkable
class Session(Protocol):
    """What the core needs from a ship connection."""

    url: str
    live: bool

    async def whoami(self) -> str: ...

    async def reconnect(self) -> None: ...

    async def invoke(self, action: Poke) -> None: ...

    async def query(self, request: Scry) -> Any: ...


Authenticator = Callable[["ShipSession"], Awaitable[None]]


async def password_login(session: "ShipSession") -> None:
    """Log in with the ship's ``+code`` and keep the ``urbauth`` cookie."""
    client = session.client
    try:
        response = await client.post(
            f"{session.url}/~/login",
            content=f"password={session.code}",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as exc:
        raise SessionError(SessionErrorKind.TRANSPORT, f"Login request failed: {exc}") from exc
    if response.status_code >= 400:
        raise SessionError(
            SessionErrorKind.LOGIN_REJECTED,
            f"Login failed with status {response.status_code}",
            status=response.status_code,
        )

    set_cookie = response.headers.get("set-cookie")
    if set_cookie:
        session.cookie = set_cookie.split(";", 1)[0].strip()
        match = _COOKIE_SHIP_RE.search(set_cookie)
        if match and match.group(1) != session.ship:
            session.log.warning("session.cookie_ship_mismatch", configured=session.ship, cookie_ship=match.group(1))
    session.live = True
    session.our_name = await session.whoami()


@dataclass(eq=False)
class ShipSession:
    """Cookie-bearing connection to one ship.

    ``authenticate`` is the reconnect strategy. It defaults to
    :func:`password_login` and can be swapped for tests or other login flows.
    """

    url: str
    ship: str
    code: str
    client: httpx.AsyncClient = field(default=None)  # type: ignore[assignment]
    timeout: float = 30.0
    authenticate: Authenticator = password_login
    logger: Any = None
    live: bool = False
    cookie: Optional[str] = None
    our_name: Optional[str] = None
    channel_id: str = field(init=False)
    _owns_client: bool = field(init=False, default=False)
    _event_ids: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.url = self.url.rstrip("/")
        self.ship = strip_sigil(self.ship)
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        self.channel_id = f"{int(time.time())}-{secrets.token_hex(3)}"
        self._event_ids = itertools.count(1)
        self.log = self.logger or structlog.get_logger("tlon_mcp.session")

    @property
    def identity(self) -> str:
        return normalize_identity(self.ship)

    def _headers(self) -> dict[str, str]:
        return {"Cookie": self.cookie} if self.cookie else {}

    async def connect(self) -> None:
        self.live = False
        await self.authenticate(self)
        self.live = True
        self.log.info("session.connected", url=self.url, ship=self.identity)

    async def reconnect(self) -> None:
        await self.connect()

    async def whoami(self) -> str:
        """Side-effect-free identity query (``GET /~/name``)."""
        if not self.cookie and not self.live:
            raise SessionError(SessionErrorKind.NOT_CONNECTED, "Session is not connected")
        try:
            response = await self.client.get(f"{self.url}/~/name", headers=self._headers())
        except httpx.HTTPError as exc:
            self.live = False
            raise SessionError(SessionErrorKind.TRANSPORT, f"Identity query failed: {exc}") from exc
        if response.status_code >= 400:
            self.live = False
            raise SessionError(
                SessionErrorKind.IDENTITY_REJECTED,
                f"Identity query failed with status {response.status_code}",
                status=response.status_code,
            )
        return response.text.strip()

    async def invoke(self, action: Poke) -> None:
        event = {
            "id": next(self._event_ids),
            "action": "poke",
            "ship": self.ship,
            "app": action.app,
            "mark": action.mark,
            "json": action.json,
        }
        self.log.debug("session.poke", app=action.app, mark=action.mark, event_id=event["id"])
        await self._put_channel([event], operation=action.describe())

    async def query(self, request: Scry) -> Any:
        operation = request.describe()
        self.log.debug("session.scry", app=request.app, path=request.path)
        try:
            response = await self.client.get(
                f"{self.url}/~/scry/{request.app}{request.path}.json",
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise RemoteActionError(RemoteErrorKind.TRANSPORT, operation, f"{operation} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteActionError(
                RemoteErrorKind.SCRY_FAILED,
                operation,
                f"Scry failed with status {response.status_code} for {request.app}{request.path}",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteActionError(
                RemoteErrorKind.SCRY_FAILED, operation, f"{operation} returned invalid JSON"
            ) from exc

    async def _put_channel(self, events: list[dict[str, Any]], *, operation: str) -> None:
        try:
            response = await self.client.put(
                f"{self.url}/~/channel/{self.channel_id}",
                json=events,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise RemoteActionError(RemoteErrorKind.TRANSPORT, operation, f"{operation} failed: {exc}") from exc
        if response.status_code >= 400:
            raise RemoteActionError(
                RemoteErrorKind.CHANNEL_REJECTED,
                operation,
                f"Failed to PUT channel (status {response.status_code})",
                status=response.status_code,
            )

    async def close(self) -> None:
        """Delete the channel (best effort) and release the HTTP client."""
        try:
            if self.live:
                await self._put_channel([{"id": next(self._event_ids), "action": "delete"}], operation="delete channel")
        except RemoteActionError as exc:
            self.log.warning("session.close_failed", error=str(exc))
        finally:
            self.live = False
            if self._owns_client:
                await self.client.aclose()
