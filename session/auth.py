"""
Auth resolver: find one working credential for an open transport.

Order is fixed and stops at the first success:
1. stored long-lived token (cleared only if the server rejects it)
2. stored username + password, then mint a long-lived token and store it
   (falling back to the raw access token when minting is refused)
3. otherwise fail with "authentication required"
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from config import CONNECTION
from logging_config import get_logger

from .errors import AuthError
from .state import AuthCredential, PasswordCredential, TokenCredential
from .transport import Transport

logger = get_logger(__name__)


@dataclass(frozen=True)
class UserProfile:
    """User-scoped settings read from the server after authentication"""
    name: Optional[str] = None
    provider_filter: Tuple[str, ...] = ()
    player_filter: Tuple[str, ...] = ()


def _string_list(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value)


def extract_profile(user_info: Optional[Dict[str, Any]]) -> UserProfile:
    """
    Build a UserProfile from the server's user dict.

    Display name wins over username; empty filters mean unrestricted.
    """
    if not user_info:
        return UserProfile()
    display_name = user_info.get("display_name")
    username = user_info.get("username")
    name = display_name if display_name else username
    return UserProfile(
        name=name or None,
        provider_filter=_string_list(user_info.get("provider_filter")),
        player_filter=_string_list(user_info.get("player_filter")),
    )


class AuthResolver:
    """Resolves stored credentials against a transport"""

    def __init__(self, store, client_name: Optional[str] = None):
        self._store = store
        self._client_name = client_name or CONNECTION["client_name"]

    async def resolve(self, transport: Transport) -> AuthCredential:
        """
        Authenticate the transport with the best stored credential.

        Returns:
            The credential that worked

        Raises:
            AuthError: the server rejected what was stored, or nothing was stored
            TransportError: the channel failed mid-auth (stored secrets are kept)
            PersistenceError: reading or updating stored secrets failed
        """
        token_rejected = False

        stored_token = await self._store.get_ma_auth_token()
        if stored_token:
            logger.info("Trying stored token...")
            if await transport.authenticate_with_token(stored_token):
                logger.info("Authenticated with stored token")
                return TokenCredential(stored_token)
            logger.warning("Stored token invalid, clearing it")
            await self._store.clear_ma_auth_token()
            token_rejected = True

        username = await self._store.get_username()
        password = await self._store.get_password()
        if username and password:
            logger.info(f"Trying stored credentials for '{username}'...")
            if await self._login(transport, username, password):
                return PasswordCredential(username, password)
            raise AuthError(AuthError.CREDENTIALS_REJECTED, f"Server rejected credentials for '{username}'")

        if token_rejected:
            raise AuthError(AuthError.TOKEN_INVALID, "Stored token rejected and no credentials stored")
        raise AuthError(AuthError.NO_CREDENTIALS, "No stored token or credentials")

    async def _login(self, transport: Transport, username: str, password: str) -> bool:
        access_token = await transport.login_with_credentials(username, password)
        if not access_token:
            return False
        logger.info("Logged in with stored credentials")

        # Prefer a minted token: it outlives the session access token
        long_lived = await transport.create_long_lived_token(self._client_name)
        if long_lived:
            await self._store.set_ma_auth_token(long_lived)
            logger.info("Saved new long-lived token")
        else:
            await self._store.set_ma_auth_token(access_token)
            logger.info("Saved session access token (server did not mint a long-lived one)")
        return True

    async def login(self, transport: Transport, username: str, password: str) -> AuthCredential:
        """
        Interactive login: store the new credentials, drop the old token, resolve.

        Raises:
            AuthError: the server rejected the credentials
        """
        await self._store.set_username(username)
        await self._store.set_password(password)
        await self._store.clear_ma_auth_token()
        return await self.resolve(transport)
