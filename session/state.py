"""
Value types shared by the session core.

The lifecycle is modelled as one small dataclass per phase. Only the phases
that own a live channel carry a transport, so "error with an open socket" or
"disconnected but still holding a handle" cannot be represented.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple, Union

if TYPE_CHECKING:
    from .transport import Transport


class ConnectionState(Enum):
    """Connection lifecycle states (exactly one is active at a time)"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"

    @property
    def is_usable(self) -> bool:
        """True when commands can be issued"""
        return self in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)


# =============================================================================
# Lifecycle phases
# =============================================================================

@dataclass(frozen=True)
class Disconnected:
    state = ConnectionState.DISCONNECTED


@dataclass(frozen=True)
class Connecting:
    transport: "Transport"
    state = ConnectionState.CONNECTING


@dataclass(frozen=True)
class Connected:
    transport: "Transport"
    state = ConnectionState.CONNECTED


@dataclass(frozen=True)
class Authenticating:
    transport: "Transport"
    state = ConnectionState.AUTHENTICATING


@dataclass(frozen=True)
class Authenticated:
    transport: "Transport"
    state = ConnectionState.AUTHENTICATED


@dataclass(frozen=True)
class Failed:
    message: str
    state = ConnectionState.ERROR


Phase = Union[Disconnected, Connecting, Connected, Authenticating, Authenticated, Failed]
LIVE_PHASES = (Connecting, Connected, Authenticating, Authenticated)


# =============================================================================
# Credentials
# =============================================================================

@dataclass(frozen=True)
class TokenCredential:
    value: str

    def __repr__(self) -> str:
        return "TokenCredential(<redacted>)"


@dataclass(frozen=True)
class PasswordCredential:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"PasswordCredential(username={self.username!r}, password=<redacted>)"


@dataclass(frozen=True)
class NoCredential:
    pass


AuthCredential = Union[TokenCredential, PasswordCredential, NoCredential]


# =============================================================================
# Read-only view handed to observers
# =============================================================================

@dataclass(frozen=True)
class SessionSnapshot:
    state: ConnectionState = ConnectionState.DISCONNECTED
    server_address: Optional[str] = None
    auth_required: bool = False
    is_authenticated: bool = False
    last_error: Optional[str] = None
    owner_name: Optional[str] = None
    provider_filter: Tuple[str, ...] = ()
    player_filter: Tuple[str, ...] = ()

    @property
    def is_connected(self) -> bool:
        return self.state.is_usable
