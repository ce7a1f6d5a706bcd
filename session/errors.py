"""
Exceptions raised by the session core.

Every error carries a short ``user_message`` meant for display, separate
from the technical text in ``str(exc)``.
"""
from typing import Optional


class SessionError(Exception):
    """Base class for session errors"""

    default_message = "Something went wrong."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.user_message = user_message or self.default_message


class TransportError(SessionError):
    """The channel failed to open, dropped, or a request on it failed"""

    default_message = "Connection failed. Check the server address and try again."


class TransportTimeout(TransportError):
    """A handshake or command did not complete within its time cap"""

    default_message = "The server did not respond in time."


class AuthError(SessionError):
    """Stored token or credentials were rejected, or nothing usable was stored"""

    TOKEN_INVALID = "token_invalid"
    CREDENTIALS_REJECTED = "credentials_rejected"
    NO_CREDENTIALS = "no_credentials"

    default_message = "Authentication required. Please log in again."

    _USER_MESSAGES = {
        TOKEN_INVALID: "Your saved login is no longer valid. Please log in again.",
        CREDENTIALS_REJECTED: "Login failed. Check your username and password.",
        NO_CREDENTIALS: "Authentication required. Please log in again.",
    }

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason, self._USER_MESSAGES.get(reason))
        self.reason = reason


class ProfileFetchError(SessionError):
    """Fetching the authenticated user's profile failed (never fatal)"""

    default_message = "Could not load your user profile."


class PersistenceError(SessionError):
    """Saving or loading stored settings failed"""

    default_message = "Could not save settings on this device."
