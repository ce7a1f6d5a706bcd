"""Tests for the Music Assistant transport against a fake client"""
import asyncio

import aiohttp
import pytest
from music_assistant_models.errors import MusicAssistantError

from conftest import wait_until
from session.errors import TransportError, TransportTimeout
from session.music_assistant import CommandError, MusicAssistantTransport, normalize_server_url

SERVER_INFO = {"server_id": "abc", "server_version": "2.5.0", "schema_version": 27, "auth_required": True}


class PlayerMissing(MusicAssistantError):
    error_code = 901


class Rejected(MusicAssistantError):
    error_code = 902


class FakeClient:
    """Stands in for MusicAssistantClient"""

    def __init__(self, server_info=None, replies=None, connect_error=None):
        self.server_info = None
        self._info = SERVER_INFO if server_info is None else server_info
        self.replies = replies or {}
        self.connect_error = connect_error
        self.listen_error = None
        self.stopped = asyncio.Event()
        self.sent = []
        self.disconnected = False

    async def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.server_info = self._info

    async def start_listening(self):
        await self.stopped.wait()
        if self.listen_error is not None:
            raise self.listen_error

    def lose_connection(self, error=None):
        self.listen_error = error
        self.stopped.set()

    async def send_command(self, command, **args):
        self.sent.append((command, args))
        reply = self.replies.get(command)
        if reply is None:
            # Never answered
            await asyncio.Event().wait()
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def disconnect(self):
        self.disconnected = True
        self.stopped.set()


async def open_transport(client, **kwargs):
    kwargs.setdefault("command_timeout", 1.0)
    transport = MusicAssistantTransport("10.0.0.5", client_factory=lambda url, session: client, **kwargs)
    await transport.open()
    return transport


async def record_drops(transport):
    drops = []

    async def on_drop(reason):
        drops.append(reason)

    transport.set_drop_handler(on_drop)
    return drops


# === Address normalization ===

@pytest.mark.parametrize("address, expected", [
    ("10.0.0.5", "http://10.0.0.5:8095"),
    ("10.0.0.5:9000", "http://10.0.0.5:9000"),
    ("http://music.local", "http://music.local:8095"),
    ("https://music.example.com", "https://music.example.com"),
    ("wss://music.example.com/ws", "https://music.example.com"),
    ("ws://10.0.0.5:8095/ws", "http://10.0.0.5:8095"),
    ("  https://music.example.com/ma/  ", "https://music.example.com/ma"),
])
def test_normalize_server_url(address, expected):
    assert normalize_server_url(address) == expected


@pytest.mark.parametrize("address", ["", "   ", "ftp://10.0.0.5"])
def test_normalize_rejects_bad_addresses(address):
    with pytest.raises(ValueError):
        normalize_server_url(address)


# === Lifecycle ===

async def test_client_built_for_normalized_url():
    seen = []

    def factory(url, session):
        seen.append((url, session))
        return FakeClient()

    transport = MusicAssistantTransport("10.0.0.5", client_factory=factory)
    await transport.open()

    assert seen[0][0] == "http://10.0.0.5:8095"
    assert isinstance(seen[0][1], aiohttp.ClientSession)
    await transport.close()
    assert seen[0][1].closed


async def test_open_reads_auth_requirement_from_server_info():
    transport = await open_transport(FakeClient())

    assert transport.connected
    assert transport.auth_required is True
    assert transport.server_info["server_version"] == "2.5.0"
    await transport.close()


async def test_open_without_auth():
    transport = await open_transport(FakeClient(server_info={"server_version": "2.0.0"}))

    assert transport.auth_required is False
    await transport.close()


async def test_open_failure_raises_and_releases():
    client = FakeClient(connect_error=ConnectionRefusedError("refused"))

    with pytest.raises(TransportError):
        await open_transport(client)
    assert client.disconnected


async def test_close_does_not_report_a_drop():
    client = FakeClient()
    transport = await open_transport(client)
    drops = await record_drops(transport)

    await transport.close()
    await transport.close()

    assert drops == []
    assert client.disconnected
    assert not transport.connected


async def test_listener_error_reports_drop_once():
    client = FakeClient()
    transport = await open_transport(client)
    drops = await record_drops(transport)

    client.lose_connection(ConnectionResetError("connection reset"))
    await wait_until(lambda: drops)

    assert drops == ["connection reset"]
    assert client.disconnected
    assert not transport.connected
    await transport.close()
    assert len(drops) == 1


async def test_listener_ending_reports_drop():
    client = FakeClient()
    transport = await open_transport(client)
    drops = await record_drops(transport)

    client.lose_connection()
    await wait_until(lambda: drops)

    assert drops == ["Server closed the connection"]


async def test_heartbeat_failure_reports_drop():
    client = FakeClient()
    transport = await open_transport(client, command_timeout=0.01, heartbeat_interval=0.01)
    drops = await record_drops(transport)

    await wait_until(lambda: drops)

    assert drops[0].startswith("Heartbeat failed")
    assert client.sent[0][0] == "info"


async def test_heartbeat_error_answer_keeps_connection():
    client = FakeClient(replies={"info": Rejected("not allowed")})
    transport = await open_transport(client, heartbeat_interval=0.01)
    drops = await record_drops(transport)

    await wait_until(lambda: len(client.sent) >= 3)

    assert drops == []
    assert transport.connected
    await transport.close()


# === Commands ===

async def test_command_result_passed_through():
    client = FakeClient(replies={"players/all": [{"player_id": "kitchen"}]})
    transport = await open_transport(client)

    result = await transport.send_command("players/all", limit=10)

    assert result == [{"player_id": "kitchen"}]
    assert client.sent[0] == ("players/all", {"limit": 10})
    assert transport.pending_count == 0
    await transport.close()


async def test_error_answer_raises_command_error():
    client = FakeClient(replies={"players/cmd/play": PlayerMissing("Player not found")})
    transport = await open_transport(client)

    with pytest.raises(CommandError) as exc_info:
        await transport.send_command("players/cmd/play", player_id="nope")

    assert exc_info.value.error_code == 901
    assert exc_info.value.details == "Player not found"
    await transport.close()


async def test_client_failure_becomes_transport_error():
    transport = await open_transport(FakeClient(replies={"players/all": ConnectionResetError("gone")}))

    with pytest.raises(TransportError) as exc_info:
        await transport.send_command("players/all")

    assert not isinstance(exc_info.value, CommandError)
    await transport.close()


async def test_command_timeout():
    transport = await open_transport(FakeClient(), command_timeout=0.01)

    with pytest.raises(TransportTimeout):
        await transport.send_command("players/all")
    assert transport.pending_count == 0
    await transport.close()


async def test_pending_request_cap():
    transport = await open_transport(FakeClient(), max_pending=1)
    first = asyncio.create_task(transport.send_command("slow"))
    await wait_until(lambda: transport.pending_count == 1)

    with pytest.raises(TransportError):
        await transport.send_command("another")

    await transport.close()
    with pytest.raises(TransportError):
        await first


async def test_send_after_close_fails():
    transport = await open_transport(FakeClient())
    await transport.close()

    with pytest.raises(TransportError):
        await transport.send_command("players/all")


async def test_pending_request_fails_when_connection_drops():
    client = FakeClient()
    transport = await open_transport(client)
    request = asyncio.create_task(transport.send_command("players/all"))
    await wait_until(lambda: transport.pending_count == 1)

    client.lose_connection(ConnectionResetError("gone"))

    with pytest.raises(TransportError):
        await request


# === Auth calls ===

async def test_token_authentication():
    client = FakeClient(replies={"auth": {"authenticated": True, "user": {"username": "jdoe"}}})
    transport = await open_transport(client)

    assert await transport.authenticate_with_token("token-1") is True
    assert transport.is_authenticated
    assert client.sent[0] == ("auth", {"token": "token-1"})
    await transport.close()


async def test_rejected_token():
    transport = await open_transport(FakeClient(replies={"auth": Rejected("Invalid token")}))

    assert await transport.authenticate_with_token("revoked") is False
    assert not transport.is_authenticated
    await transport.close()


async def test_token_auth_timeout_is_not_a_rejection():
    transport = await open_transport(FakeClient(), command_timeout=0.01)

    with pytest.raises(TransportTimeout):
        await transport.authenticate_with_token("good-token")
    await transport.close()


async def test_login_and_token_creation():
    client = FakeClient(replies={
        "auth/login": {"access_token": "short-lived", "user": {"username": "jdoe"}},
        "auth/token/create": "long-lived",
    })
    transport = await open_transport(client)

    assert await transport.login_with_credentials("jdoe", "secret") == "short-lived"
    assert await transport.create_long_lived_token("Ensemble") == "long-lived"
    assert transport.is_authenticated
    assert client.sent[1] == ("auth/token/create", {"name": "Ensemble"})
    await transport.close()


async def test_rejected_login_and_refused_token():
    client = FakeClient(replies={
        "auth/login": Rejected("Invalid credentials"),
        "auth/token/create": Rejected("Not allowed"),
    })
    transport = await open_transport(client)

    assert await transport.login_with_credentials("jdoe", "wrong") is None
    assert await transport.create_long_lived_token("Ensemble") is None
    await transport.close()


async def test_current_user_info():
    user = {"username": "jdoe", "display_name": "Jane", "player_filter": []}
    transport = await open_transport(FakeClient(replies={"auth/me": user}))

    assert await transport.get_current_user_info() == user
    await transport.close()
