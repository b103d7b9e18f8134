import json

import httpx
import pytest

from tlon_mcp.errors import RemoteActionError, RemoteErrorKind, SessionError, SessionErrorKind
from tlon_mcp.session import Poke, Scry, ShipSession

SHIP_URL = "http://ship.test"
COOKIE = "urbauth-~zod=0v5.abcde"


class FakeShip:
    """Routes Eyre requests; records every request it sees."""

    def __init__(self, *, login_status=204, channel_status=204, scry_status=200, scry_body=None):
        self.requests: list[httpx.Request] = []
        self.login_status = login_status
        self.channel_status = channel_status
        self.scry_status = scry_status
        self.scry_body = scry_body if scry_body is not None else {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/~/login":
            if self.login_status >= 400:
                return httpx.Response(self.login_status)
            return httpx.Response(
                self.login_status,
                headers={"set-cookie": f"{COOKIE}; Path=/; Max-Age=604800"},
            )
        if path == "/~/name":
            if request.headers.get("cookie") != COOKIE:
                return httpx.Response(403)
            return httpx.Response(200, text="~zod")
        if path.startswith("/~/channel/"):
            return httpx.Response(self.channel_status)
        if path.startswith("/~/scry/"):
            return httpx.Response(self.scry_status, json=self.scry_body)
        return httpx.Response(404)

    def paths(self, method=None):
        return [r.url.path for r in self.requests if method is None or r.method == method]


def _session(ship: FakeShip, **kwargs) -> ShipSession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(ship))
    return ShipSession(url=SHIP_URL + "/", ship="~zod", code="lidlut-tabwed-pillex-ridrup", client=client, **kwargs)


@pytest.mark.asyncio
async def test_connect_logs_in_and_keeps_cookie():
    ship = FakeShip()
    session = _session(ship)

    await session.connect()

    assert session.live
    assert session.cookie == COOKIE
    assert session.our_name == "~zod"
    login = ship.requests[0]
    assert login.method == "POST"
    assert login.content == b"password=lidlut-tabwed-pillex-ridrup"
    assert ship.requests[1].headers["cookie"] == COOKIE


@pytest.mark.asyncio
async def test_rejected_login():
    session = _session(FakeShip(login_status=400))

    with pytest.raises(SessionError) as excinfo:
        await session.connect()
    assert excinfo.value.kind is SessionErrorKind.LOGIN_REJECTED
    assert excinfo.value.status == 400
    assert not session.live


@pytest.mark.asyncio
async def test_unreachable_ship_is_a_transport_error():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    session = ShipSession(url=SHIP_URL, ship="zod", code="x", client=client)

    with pytest.raises(SessionError) as excinfo:
        await session.connect()
    assert excinfo.value.kind is SessionErrorKind.TRANSPORT


@pytest.mark.asyncio
async def test_whoami_before_connect_is_not_connected():
    session = _session(FakeShip())
    with pytest.raises(SessionError) as excinfo:
        await session.whoami()
    assert excinfo.value.kind is SessionErrorKind.NOT_CONNECTED


@pytest.mark.asyncio
async def test_rejected_identity_query_marks_session_dead():
    ship = FakeShip()
    session = _session(ship)
    await session.connect()
    session.cookie = "urbauth-~zod=expired"

    with pytest.raises(SessionError) as excinfo:
        await session.whoami()
    assert excinfo.value.kind is SessionErrorKind.IDENTITY_REJECTED
    assert not session.live


@pytest.mark.asyncio
async def test_poke_puts_event_on_channel():
    ship = FakeShip()
    session = _session(ship)
    await session.connect()

    await session.invoke(Poke(app="chat", mark="chat-dm-action", json={"ship": "~nec"}))
    await session.invoke(Poke(app="chat", mark="chat-dm-action", json={"ship": "~bus"}))

    puts = [r for r in ship.requests if r.method == "PUT"]
    assert len(puts) == 2
    assert puts[0].url.path == f"/~/channel/{session.channel_id}"
    assert puts[0].headers["cookie"] == COOKIE
    first, second = (json.loads(r.content) for r in puts)
    assert first == [
        {"id": 1, "action": "poke", "ship": "zod", "app": "chat", "mark": "chat-dm-action", "json": {"ship": "~nec"}}
    ]
    assert second[0]["id"] == 2


@pytest.mark.asyncio
async def test_rejected_channel_put():
    session = _session(FakeShip(channel_status=500))
    await session.connect()

    with pytest.raises(RemoteActionError) as excinfo:
        await session.invoke(Poke(app="chat", mark="chat-dm-action", json={}))
    assert excinfo.value.kind is RemoteErrorKind.CHANNEL_REJECTED
    assert str(excinfo.value) == "Failed to PUT channel (status 500)"


@pytest.mark.asyncio
async def test_scry_builds_json_path():
    ship = FakeShip(scry_body={"~nec": {"nickname": "Nec"}})
    session = _session(ship)
    await session.connect()

    result = await session.query(Scry(app="contacts", path="/all"))

    assert result == {"~nec": {"nickname": "Nec"}}
    assert ship.requests[-1].url.path == "/~/scry/contacts/all.json"


@pytest.mark.asyncio
async def test_failed_scry():
    session = _session(FakeShip(scry_status=404))
    await session.connect()

    with pytest.raises(RemoteActionError) as excinfo:
        await session.query(Scry(app="chat", path="/dm/~nec/writs/newest/10/light"))
    assert excinfo.value.kind is RemoteErrorKind.SCRY_FAILED
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_close_deletes_channel():
    ship = FakeShip()
    session = _session(ship)
    await session.connect()

    await session.close()

    last = ship.requests[-1]
    assert last.method == "PUT"
    assert json.loads(last.content)[0]["action"] == "delete"
    assert not session.live


@pytest.mark.asyncio
async def test_reconnect_uses_authenticator():
    calls = []

    async def fake_login(session):
        calls.append(session.ship)
        session.cookie = COOKIE

    session = _session(FakeShip(), authenticate=fake_login)
    await session.reconnect()

    assert calls == ["zod"]
    assert session.live
