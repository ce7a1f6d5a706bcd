"""
Session coordinator: the facade the rest of the application talks to.

Creates one SessionStateMachine per connection attempt, runs the auth
resolver and profile fetch when the server wants authentication, mirrors
the machine's state and republishes it as lifecycle events on a bus that
any number of observers can subscribe to.

Each connect() bumps an attempt counter. Work belonging to an older attempt
(a late handshake, a late auth answer) is dropped instead of overwriting
the state of the newer one.
"""
from functools import partial
from typing import Optional, Tuple

from config import TIMINGS
from logging_config import get_logger

from .auth import AuthResolver, extract_profile
from .errors import AuthError, PersistenceError, ProfileFetchError, SessionError, TransportError
from .events import Authenticated, Disconnected, Failed, LifecycleBus, Ready, StateChanged
from .machine import SessionStateMachine
from .state import ConnectionState, SessionSnapshot
from .transport import Transport, TransportFactory

logger = get_logger(__name__)


def default_transport_factory(address: str) -> Transport:
    # Imported here so the core can be used with other backends without aiohttp
    from .music_assistant import create_transport
    return create_transport(address)


class SessionCoordinator:
    """Owns the session for the whole process lifetime"""

    def __init__(
        self,
        store,
        transport_factory: Optional[TransportFactory] = None,
        resolver: Optional[AuthResolver] = None,
        bus: Optional[LifecycleBus] = None,
        connection_timeout: Optional[float] = None,
    ):
        self._store = store
        self._transport_factory = transport_factory or default_transport_factory
        self._resolver = resolver or AuthResolver(store)
        self._bus = bus or LifecycleBus()
        self._connection_timeout = connection_timeout or TIMINGS["connection_timeout"]

        self._machine: Optional[SessionStateMachine] = None
        self._unsubscribe = None
        self._attempt = 0
        self._pending_login: Optional[Tuple[str, str]] = None
        self._closed = False

        self._state = ConnectionState.DISCONNECTED
        self._server_address: Optional[str] = None
        self._auth_required = False
        self._last_error: Optional[str] = None
        self._owner_name: Optional[str] = None
        self._provider_filter: Tuple[str, ...] = ()
        self._player_filter: Tuple[str, ...] = ()

    # === Read-only view ===

    @property
    def events(self) -> LifecycleBus:
        return self._bus

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_usable

    @property
    def is_authenticated(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED

    @property
    def server_address(self) -> Optional[str]:
        return self._server_address

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def owner_name(self) -> Optional[str]:
        return self._owner_name

    @property
    def provider_filter(self) -> Tuple[str, ...]:
        return self._provider_filter

    @property
    def player_filter(self) -> Tuple[str, ...]:
        return self._player_filter

    @property
    def transport(self) -> Optional[Transport]:
        """Live transport for issuing commands, or None"""
        if self._machine is None or not self.is_connected:
            return None
        return self._machine.transport

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            server_address=self._server_address,
            auth_required=self._auth_required,
            is_authenticated=self.is_authenticated,
            last_error=self._last_error,
            owner_name=self._owner_name,
            provider_filter=self._provider_filter,
            player_filter=self._player_filter,
        )

    # === Commands ===

    async def connect(self, address: str) -> None:
        """
        Connect to a server, replacing any previous connection.

        Raises:
            PersistenceError: the address could not be saved
            TransportError: the transport could not be created or opened
            AuthError: the server requires authentication and nothing stored worked
        """
        if self._closed:
            raise SessionError("Session coordinator is closed")

        self._attempt += 1
        attempt = self._attempt
        await self._release_machine()
        self._server_address = address

        try:
            await self._store.set_server_url(address)
        except PersistenceError as e:
            logger.error(f"Could not save server address: {e}")
            if attempt == self._attempt:
                await self._set_error(e.user_message)
            raise

        if attempt != self._attempt:
            return

        logger.info(f"Connecting to {address}...")
        machine = SessionStateMachine(address, self._transport_factory, self._connection_timeout)
        self._machine = machine
        self._unsubscribe = machine.subscribe(partial(self._on_machine_event, machine, attempt))

        await machine.connect()

        if attempt != self._attempt or machine.state is not ConnectionState.CONNECTED:
            return
        if machine.auth_required:
            await self._authenticate(machine, attempt)

    async def disconnect(self) -> None:
        """Close the connection. Calling it again is a no-op."""
        self._attempt += 1
        self._pending_login = None
        await self._release_machine()

        previous = self._state
        if previous is ConnectionState.DISCONNECTED:
            return
        logger.info(f"Disconnected from {self._server_address}")
        self._state = ConnectionState.DISCONNECTED
        await self._bus.publish(StateChanged(previous, ConnectionState.DISCONNECTED))
        await self._bus.publish(Disconnected(self._server_address, previous))

    async def check_and_reconnect(self) -> bool:
        """
        Reconnect to the last known server unless already usable.

        Meant for external triggers (app resume, network back); the core
        never polls on its own. Returns True if a connection was attempted.
        Connection and auth failures are reflected in state, not raised.
        """
        if self._closed or self._state.is_usable:
            return False
        address = self._server_address or await self._store.get_server_url()
        if not address:
            return False

        logger.info(f"Reconnecting to {address} (state: {self._state.value})")
        try:
            await self.connect(address)
        except (TransportError, AuthError) as e:
            logger.warning(f"Reconnect failed: {e}")
        return True

    async def start(self) -> bool:
        """Connect to the stored server, if there is one"""
        stored_name = await self._store.get_owner_name()
        if stored_name:
            self._owner_name = stored_name
        return await self.check_and_reconnect()

    async def login(self, address: str, username: str, password: str) -> None:
        """
        Interactive login: connect and authenticate with new credentials.

        Raises the same errors as connect().
        """
        logger.info(f"Logging in to {address} as '{username}'")
        credentials = (username, password)
        self._pending_login = credentials
        try:
            await self.connect(address)
        finally:
            # Unused when the server needs no auth or the open failed
            if self._pending_login is credentials:
                self._pending_login = None

    async def logout(self) -> None:
        """Disconnect and forget stored token and credentials"""
        await self.disconnect()
        await self._store.clear_credentials()
        self._owner_name = None
        self._provider_filter = ()
        self._player_filter = ()
        logger.info("Logged out")

    async def close(self) -> None:
        """Tear down at shutdown"""
        if self._closed:
            return
        await self.disconnect()
        self._closed = True

    # === Internals ===

    async def _release_machine(self) -> None:
        machine, self._machine = self._machine, None
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
        if machine is not None:
            await machine.dispose()

    async def _set_error(self, message: str) -> None:
        previous = self._state
        self._state = ConnectionState.ERROR
        self._last_error = message
        await self._bus.publish(StateChanged(previous, ConnectionState.ERROR, message))
        await self._bus.publish(Failed(message))

    def _is_current(self, machine: SessionStateMachine, attempt: int) -> bool:
        return attempt == self._attempt and machine is self._machine

    async def _authenticate(self, machine: SessionStateMachine, attempt: int) -> None:
        if not await machine.begin_authentication():
            return
        transport = machine.transport

        pending, self._pending_login = self._pending_login, None
        try:
            if pending:
                await self._resolver.login(transport, *pending)
            else:
                await self._resolver.resolve(transport)
        except (AuthError, PersistenceError, TransportError) as e:
            if not self._is_current(machine, attempt) or machine.state is not ConnectionState.AUTHENTICATING:
                logger.debug(f"Ignoring auth result of a superseded connection: {e}")
                return
            logger.warning(f"Authentication failed: {e}")
            await machine.fail(e.user_message)
            raise

        if not self._is_current(machine, attempt) or machine.state is not ConnectionState.AUTHENTICATING:
            return

        await self._load_profile(transport, attempt)
        if not self._is_current(machine, attempt):
            return
        await machine.complete_authentication()

    async def _load_profile(self, transport: Transport, attempt: int) -> None:
        """Best-effort: failure leaves the filters empty and the name unchanged"""
        try:
            user_info = await transport.get_current_user_info()
            if user_info is None:
                raise ProfileFetchError("Server returned no user info")
        except Exception as e:
            error = e if isinstance(e, ProfileFetchError) else ProfileFetchError(str(e))
            logger.warning(f"Could not load user profile: {error}")
            if attempt == self._attempt:
                self._provider_filter = ()
                self._player_filter = ()
            return

        if attempt != self._attempt:
            return
        profile = extract_profile(user_info)
        self._provider_filter = profile.provider_filter
        self._player_filter = profile.player_filter
        if profile.provider_filter or profile.player_filter:
            logger.info(f"User filters: {len(profile.provider_filter)} providers, "
                        f"{len(profile.player_filter)} players")
        if profile.name:
            self._owner_name = profile.name
            try:
                await self._store.set_owner_name(profile.name)
            except PersistenceError as e:
                logger.warning(f"Could not save owner name: {e}")

    async def _on_machine_event(self, machine: SessionStateMachine, attempt: int, event: StateChanged) -> None:
        if not self._is_current(machine, attempt):
            return

        previous = self._state
        current = event.current
        self._state = current
        self._auth_required = machine.auth_required
        if current is ConnectionState.ERROR:
            self._last_error = event.error
        elif current is ConnectionState.CONNECTING:
            self._last_error = None

        await self._bus.publish(StateChanged(previous, current, event.error))

        if current is ConnectionState.CONNECTED and not machine.auth_required:
            await self._bus.publish(Ready(machine.address))
        elif current is ConnectionState.AUTHENTICATED:
            logger.info(f"Authenticated as {self._owner_name or 'unknown user'}")
            await self._bus.publish(Authenticated(machine.address, self._owner_name))
        elif current is ConnectionState.DISCONNECTED:
            # Filters and cached data are kept for instant resume
            await self._bus.publish(Disconnected(machine.address, previous))
        elif current is ConnectionState.ERROR:
            await self._bus.publish(Failed(self._last_error or "Connection failed"))
