"""
Base class for transports (the live channel to a music server).

A transport is created for one connection attempt, opened once, and closed
once. It is never reopened: reconnecting always builds a fresh instance.

To add a new server backend:
1. Subclass Transport
2. Implement open(), close() and the four auth/profile calls
3. Pass a factory (address -> Transport) to SessionCoordinator
"""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

# Called once when an open channel drops on its own (not after close())
DropHandler = Callable[[str], Awaitable[None]]
TransportFactory = Callable[[str], "Transport"]


class Transport(ABC):
    """
    Abstract base class for a bidirectional connection to the server.

    Required methods:
        open() - Handshake; raise TransportError on failure
        close() - Tear down; must be idempotent
        authenticate_with_token(), login_with_credentials(),
        create_long_lived_token(), get_current_user_info()
    """

    def __init__(self, address: str):
        self.address = address
        self._drop_handler: Optional[DropHandler] = None
        self._auth_required = False
        self._authenticated = False

    @property
    def auth_required(self) -> bool:
        """Whether the server asked for authentication during the handshake"""
        return self._auth_required

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated

    def set_drop_handler(self, handler: Optional[DropHandler]) -> None:
        """
        Install the callback for unexpected drops.

        The owner installs it before open() and clears it before close(),
        so a deliberate close never reports itself as a drop.
        """
        self._drop_handler = handler

    async def _report_drop(self, reason: str) -> None:
        handler, self._drop_handler = self._drop_handler, None
        if handler is not None:
            await handler(reason)

    @abstractmethod
    async def open(self) -> None:
        """
        Open the channel and complete the handshake.

        Raises:
            TransportError: the channel could not be opened
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and release every resource. Safe to call twice."""

    @abstractmethod
    async def authenticate_with_token(self, token: str) -> bool:
        """
        Authenticate the open channel with a stored token.

        Returns:
            True if the server accepted the token
        """

    @abstractmethod
    async def login_with_credentials(self, username: str, password: str) -> Optional[str]:
        """
        Log in with username and password.

        Returns:
            The session access token, or None if rejected
        """

    @abstractmethod
    async def create_long_lived_token(self, name: str) -> Optional[str]:
        """
        Mint a long-lived token for the logged-in user.

        Returns:
            The new token, or None if the server would not issue one
        """

    @abstractmethod
    async def get_current_user_info(self) -> Optional[Dict[str, Any]]:
        """
        Fetch the authenticated user's profile.

        Returns:
            Profile dict (username, display_name, provider_filter,
            player_filter, ...) or None if unavailable
        """
