"""
Session state machine.

Owns the connection lifecycle and the single live transport. It is the only
object that opens or closes a transport. Every transition publishes a
StateChanged event and waits for the subscribers before returning, so
subscribers see transitions in the order they happened.

It never retries by itself: reconnecting after a drop is the caller's job.
"""
import asyncio
from functools import partial
from typing import Callable, Optional

from config import TIMINGS
from logging_config import get_logger

from .errors import TransportError, TransportTimeout
from .events import LifecycleBus, StateChanged
from .state import (
    LIVE_PHASES,
    Authenticated,
    Authenticating,
    Connected,
    Connecting,
    ConnectionState,
    Disconnected,
    Failed,
    Phase,
)
from .transport import Transport, TransportFactory

logger = get_logger(__name__)


class SessionStateMachine:
    """Connection lifecycle for one server address"""

    def __init__(
        self,
        address: str,
        transport_factory: TransportFactory,
        connection_timeout: Optional[float] = None,
    ):
        self.address = address
        self._transport_factory = transport_factory
        self._connection_timeout = connection_timeout or TIMINGS["connection_timeout"]
        self._phase: Phase = Disconnected()
        self._last_error: Optional[str] = None
        self._auth_required = False
        self._disposed = False
        # Bumped by every connect/disconnect/dispose; an open() that finishes
        # under an older generation was superseded and must not touch state
        self._generation = 0
        self._events = LifecycleBus(name="machine")

    # === Read-only view ===

    @property
    def state(self) -> ConnectionState:
        return self._phase.state

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def transport(self) -> Optional[Transport]:
        if isinstance(self._phase, LIVE_PHASES):
            return self._phase.transport
        return None

    @property
    def auth_required(self) -> bool:
        return self._auth_required

    @property
    def is_authenticated(self) -> bool:
        return isinstance(self._phase, Authenticated)

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, handler) -> Callable[[], None]:
        """Receive StateChanged events. Returns an unsubscribe callable."""
        return self._events.subscribe(StateChanged, handler)

    # === Transitions ===

    async def _enter(self, phase: Phase) -> None:
        previous = self._phase.state
        self._phase = phase
        error = None
        if isinstance(phase, Failed):
            self._last_error = phase.message
            error = phase.message
        logger.debug(f"{self.address}: {previous.value} -> {phase.state.value}")
        await self._events.publish(StateChanged(previous, phase.state, error))

    async def _close_transport(self, transport: Optional[Transport]) -> None:
        if transport is None:
            return
        transport.set_drop_handler(None)
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport for {transport.address}: {e}")

    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    async def connect(self, address: Optional[str] = None) -> None:
        """
        Open a fresh transport to the server.

        Any live transport is closed first. Returns quietly if a later
        connect/disconnect/dispose superseded this attempt while it was
        in flight.

        Raises:
            TransportTimeout: the handshake did not finish within the connection timeout
            TransportError: the transport could not be created or opened
        """
        if self._disposed:
            logger.debug("connect() ignored: machine disposed")
            return
        if address:
            self.address = address

        self._generation += 1
        generation = self._generation
        await self._close_transport(self.transport)

        try:
            transport = self._transport_factory(self.address)
        except Exception as e:
            logger.error(f"Cannot create transport for {self.address}: {e}")
            failure = e if isinstance(e, TransportError) else TransportError(f"Cannot create transport: {e}")
            if self._is_current(generation):
                await self._enter(Failed(failure.user_message))
            if failure is e:
                raise
            raise failure from e

        transport.set_drop_handler(partial(self._on_drop, transport))
        self._last_error = None
        self._auth_required = False
        await self._enter(Connecting(transport))
        if not self._is_current(generation):
            await self._close_transport(transport)
            return

        error: Optional[TransportError] = None
        try:
            await asyncio.wait_for(transport.open(), self._connection_timeout)
        except asyncio.TimeoutError:
            error = TransportTimeout(f"Connection to {self.address} timed out after {self._connection_timeout}s")
        except TransportError as e:
            error = e
        except Exception as e:
            error = TransportError(f"Connection to {self.address} failed: {e}")

        if not self._is_current(generation):
            # Superseded while the handshake was running
            logger.debug(f"Ignoring stale connection attempt to {self.address}")
            await self._close_transport(transport)
            return

        if error is not None:
            logger.warning(f"Connection to {self.address} failed: {error}")
            await self._close_transport(transport)
            await self._enter(Failed(error.user_message))
            raise error

        self._auth_required = transport.auth_required
        logger.info(f"Connected to {self.address} (auth required: {self._auth_required})")
        await self._enter(Connected(transport))

    async def begin_authentication(self) -> bool:
        """connected -> authenticating. Returns False if not in the connected phase."""
        if self._disposed or not isinstance(self._phase, Connected):
            return False
        await self._enter(Authenticating(self._phase.transport))
        return True

    async def complete_authentication(self) -> bool:
        """authenticating -> authenticated. Returns False if not authenticating."""
        if self._disposed or not isinstance(self._phase, Authenticating):
            return False
        await self._enter(Authenticated(self._phase.transport))
        return True

    async def fail(self, message: str) -> bool:
        """Close the live transport and enter error with a user-facing message"""
        if self._disposed or not isinstance(self._phase, LIVE_PHASES):
            return False
        self._generation += 1
        await self._close_transport(self.transport)
        await self._enter(Failed(message))
        return True

    async def disconnect(self) -> None:
        """Close the live transport and enter disconnected. No-op when already disconnected."""
        if self._disposed:
            return
        self._generation += 1
        if isinstance(self._phase, Disconnected):
            return
        await self._close_transport(self.transport)
        await self._enter(Disconnected())

    async def dispose(self) -> None:
        """Close everything without publishing. In-flight work is ignored afterwards."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        transport = self.transport
        self._phase = Disconnected()
        await self._close_transport(transport)

    async def _on_drop(self, transport: Transport, reason: str) -> None:
        if self._disposed or transport is not self.transport:
            logger.debug(f"Ignoring drop of superseded transport: {reason}")
            return
        logger.warning(f"Connection to {self.address} lost ({self.state.value}): {reason}")
        self._generation += 1
        await self._close_transport(transport)
        await self._enter(Disconnected())
