"""
Session Package - connection lifecycle for the Music Assistant client

    from session import SessionCoordinator, Ready, Authenticated

The internal structure is:
    state.py        - ConnectionState, lifecycle phases, credentials, snapshot
    errors.py       - Exception taxonomy
    events.py       - Lifecycle events and the observer bus
    transport.py    - Transport base class
    music_assistant.py - Websocket transport for Music Assistant servers
    auth.py         - Auth resolver and profile extraction
    machine.py      - Per-attempt state machine
    coordinator.py  - Facade used by the application
    engine.py       - Playback engine binding
    optimistic.py   - Optimistic update helper

music_assistant is not re-exported here; import it directly so the core
stays usable with other transports.
"""

from .state import (
    ConnectionState,
    AuthCredential,
    TokenCredential,
    PasswordCredential,
    NoCredential,
    SessionSnapshot,
)
from .errors import (
    SessionError,
    TransportError,
    TransportTimeout,
    AuthError,
    ProfileFetchError,
    PersistenceError,
)
from .events import (
    LifecycleBus,
    StateChanged,
    Ready,
    Authenticated,
    Disconnected,
    Failed,
)
from .transport import Transport, TransportFactory
from .auth import AuthResolver, UserProfile, extract_profile
from .machine import SessionStateMachine
from .coordinator import SessionCoordinator
from .engine import PlaybackEngine, PlaybackEngineBinding
from .optimistic import OptimisticAction, run_optimistic
