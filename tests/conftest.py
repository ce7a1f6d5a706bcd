"""Pytest configuration and shared fixtures"""
import asyncio
import os
import tempfile

# Keep settings.json / state.json written during imports out of the working tree
_TMP_DIR = tempfile.mkdtemp(prefix="ensemble-tests-")
os.environ.setdefault("ENSEMBLE_SETTINGS_FILE", os.path.join(_TMP_DIR, "settings.json"))
os.environ.setdefault("ENSEMBLE_STATE_FILE", os.path.join(_TMP_DIR, "state.json"))

import pytest

from session.errors import PersistenceError
from session.events import LifecycleBus
from session.transport import Transport


# =============================================================================
# Transport
# =============================================================================

class FakeTransport(Transport):
    """In-memory transport that records every call in order"""

    def __init__(
        self,
        address,
        auth_required=False,
        open_error=None,
        gate=None,
        auth_gate=None,
        valid_tokens=(),
        credentials=None,
        access_token="access-token",
        minted_token="minted-token",
        user_info=None,
        user_info_error=None,
        auth_error=None,
    ):
        super().__init__(address)
        self._server_auth_required = auth_required
        self.open_error = open_error
        self.gate = gate
        self.auth_gate = auth_gate
        self.valid_tokens = set(valid_tokens)
        self.credentials = dict(credentials or {})
        self.access_token = access_token
        self.minted_token = minted_token
        self.user_info = user_info
        self.user_info_error = user_info_error
        self.auth_error = auth_error
        self.calls = []
        self.opened = False
        self.close_count = 0

    @property
    def closed(self):
        return self.close_count > 0

    @property
    def live(self):
        return self.opened and not self.closed

    async def open(self):
        self.calls.append(("open",))
        if self.gate is not None:
            await self.gate.wait()
        if self.open_error is not None:
            raise self.open_error
        self._auth_required = self._server_auth_required
        self.opened = True

    async def close(self):
        self.calls.append(("close",))
        self.close_count += 1

    async def drop(self, reason="connection reset"):
        """Simulate the server going away"""
        await self._report_drop(reason)

    async def authenticate_with_token(self, token):
        self.calls.append(("token", token))
        if self.auth_gate is not None:
            await self.auth_gate.wait()
        if self.auth_error is not None:
            raise self.auth_error
        if token in self.valid_tokens:
            self._authenticated = True
            return True
        return False

    async def login_with_credentials(self, username, password):
        self.calls.append(("login", username))
        if self.auth_gate is not None:
            await self.auth_gate.wait()
        if self.auth_error is not None:
            raise self.auth_error
        if self.credentials.get(username) == password:
            self._authenticated = True
            return self.access_token
        return None

    async def create_long_lived_token(self, name):
        self.calls.append(("mint", name))
        return self.minted_token

    async def get_current_user_info(self):
        self.calls.append(("user_info",))
        if self.user_info_error is not None:
            raise self.user_info_error
        return self.user_info


class FakeTransportFactory:
    """Builds FakeTransports; per-address options override the defaults"""

    def __init__(self, **defaults):
        self.defaults = defaults
        self.options = {}
        self.created = []

    def __call__(self, address):
        kwargs = dict(self.defaults)
        kwargs.update(self.options.get(address, {}))
        transport = FakeTransport(address, **kwargs)
        self.created.append(transport)
        return transport

    @property
    def live(self):
        return [t for t in self.created if t.live]

    @property
    def last(self):
        return self.created[-1]


# =============================================================================
# Persistence
# =============================================================================

class FakeStore:
    """Async key-value store recording reads and writes"""

    def __init__(self, **values):
        self.values = dict(values)
        self.calls = []
        self.fail_on = set()

    async def _get(self, key):
        self.calls.append(("get", key))
        return self.values.get(key)

    async def _set(self, key, value):
        if key in self.fail_on:
            raise PersistenceError(f"Cannot write {key}")
        self.calls.append(("set", key, value))
        if value is None or value == "":
            self.values.pop(key, None)
        else:
            self.values[key] = value

    async def get_server_url(self):
        return await self._get("server_url")

    async def set_server_url(self, url):
        await self._set("server_url", url)

    async def get_ma_auth_token(self):
        return await self._get("token")

    async def set_ma_auth_token(self, token):
        await self._set("token", token)

    async def clear_ma_auth_token(self):
        self.calls.append(("clear", "token"))
        self.values.pop("token", None)

    async def get_username(self):
        return await self._get("username")

    async def set_username(self, username):
        await self._set("username", username)

    async def get_password(self):
        return await self._get("password")

    async def set_password(self, password):
        await self._set("password", password)

    async def get_owner_name(self):
        return await self._get("owner_name")

    async def set_owner_name(self, name):
        await self._set("owner_name", name)

    async def clear_credentials(self):
        self.calls.append(("clear", "credentials"))
        for key in ("token", "username", "password"):
            self.values.pop(key, None)


# =============================================================================
# Clock
# =============================================================================

class FakeHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """call_later()/time() driven by advance() instead of the event loop"""

    def __init__(self):
        self.now = 0.0
        self.handles = []

    def time(self):
        return self.now

    def call_later(self, delay, callback):
        handle = FakeHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.now = handle.when
            handle.fired = True
            handle.callback()
        self.now = target


# =============================================================================
# Events
# =============================================================================

class EventRecorder:
    def __init__(self, bus):
        self.events = []
        bus.subscribe_all(self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]

    def names(self):
        return [type(e).__name__ for e in self.events]

    def clear(self):
        self.events.clear()


async def wait_until(predicate, timeout=1.0):
    """Yield to the loop until predicate() is true"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def bus():
    return LifecycleBus(name="test")


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)
