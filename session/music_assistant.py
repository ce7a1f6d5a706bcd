"""
Music Assistant transport.

Talks to a Music Assistant server through MusicAssistantClient, which owns
the websocket and matches command results to requests. This module adds
what the session core needs on top of the client:

- per-command timeouts and a cap on in-flight commands
- a background listener whose end is reported as a drop
- a heartbeat that turns a half-open socket into a drop
- the token / credential / profile calls used by the auth resolver
"""
import asyncio
from typing import Any, Callable, Dict, Optional, Set
from urllib.parse import urlparse, urlunparse

import aiohttp
from music_assistant_client import MusicAssistantClient
from music_assistant_models.errors import MusicAssistantError

from config import MUSIC_ASSISTANT, NETWORK, TIMINGS
from logging_config import get_logger

from .errors import TransportError, TransportTimeout
from .transport import Transport

logger = get_logger(__name__)

# (server_url, aiohttp session) -> client with connect/start_listening/send_command/disconnect
ClientFactory = Callable[[str, aiohttp.ClientSession], Any]


class CommandError(TransportError):
    """The server answered a command with an error"""

    def __init__(self, command: str, error_code: Any, details: Any = None):
        super().__init__(f"{command} rejected ({error_code}): {details}")
        self.command = command
        self.error_code = error_code
        self.details = details


def normalize_server_url(address: str) -> str:
    """
    Turn user input into the base URL of a Music Assistant server.

    "192.168.1.10" -> "http://192.168.1.10:8095". Addresses with an explicit
    scheme keep it; plain http without a port gets the default MA port since
    that is the non-proxied setup. ws/wss are mapped to http/https.
    """
    address = (address or "").strip()
    if not address:
        raise ValueError("Server address is empty")
    if "://" not in address:
        address = f"http://{address}"

    parsed = urlparse(address)
    scheme = {"ws": "http", "wss": "https"}.get(parsed.scheme, parsed.scheme)
    if scheme not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError(f"No host in server address: {address}")

    netloc = parsed.netloc
    if parsed.port is None and scheme == "http":
        netloc = f"{netloc}:{NETWORK['default_ws_port']}"

    path = parsed.path.rstrip("/")
    if path.endswith("/ws"):
        path = path[:-3]
    return urlunparse((scheme, netloc, path, "", "", ""))


def _server_info_dict(info: Any) -> Dict[str, Any]:
    """ServerInfoMessage (or a plain dict) as a dict"""
    if info is None:
        return {}
    if isinstance(info, dict):
        return info
    if hasattr(info, "to_dict"):
        return info.to_dict()
    return dict(vars(info))


class MusicAssistantTransport(Transport):
    """One client session with a Music Assistant server"""

    def __init__(
        self,
        address: str,
        client_factory: Optional[ClientFactory] = None,
        command_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        max_pending: Optional[int] = None,
    ):
        super().__init__(address)
        self.server_url = normalize_server_url(address)
        self._client_factory = client_factory or self._create_client
        self._command_timeout = command_timeout or TIMINGS["command_timeout"]
        self._heartbeat_interval = heartbeat_interval or TIMINGS["heartbeat_interval"]
        self._max_pending = max_pending or NETWORK["max_pending_requests"]

        self._http_session: Optional[aiohttp.ClientSession] = None
        self._client = None
        self._requests: Set[asyncio.Future] = set()
        self._listener_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._closed = False
        self.server_info: Dict[str, Any] = {}

    @property
    def connected(self) -> bool:
        return self._client is not None and not self._closed

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    @staticmethod
    def _create_client(server_url: str, http_session: aiohttp.ClientSession) -> MusicAssistantClient:
        # Auth runs through explicit commands after the handshake, so no token here
        return MusicAssistantClient(server_url=server_url, aiohttp_session=http_session, token=None)

    # === Lifecycle ===

    async def open(self) -> None:
        if self._closed:
            raise TransportError("Transport was already closed")

        logger.debug(f"Opening Music Assistant client: {self.server_url}")
        try:
            self._http_session = aiohttp.ClientSession()
            self._client = self._client_factory(self.server_url, self._http_session)
            await self._client.connect()
            self.server_info = _server_info_dict(self._client.server_info)
        except Exception as e:
            await self._release()
            raise TransportError(f"Cannot connect to {self.server_url}: {e}") from e

        self._auth_required = bool(self.server_info.get("auth_required", False))
        logger.info(
            f"Connected to Music Assistant {self.server_info.get('server_version', '?')} "
            f"(schema {self.server_info.get('schema_version', '?')}, auth required: {self._auth_required})"
        )

        self._listener_task = asyncio.create_task(self._listen())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def close(self) -> None:
        if self._closed and self._client is None:
            return
        self._closed = True
        self._drop_handler = None
        await self._release()
        logger.debug(f"Closed Music Assistant client: {self.server_url}")

    async def _release(self) -> None:
        """Cancel background tasks and in-flight commands, disconnect the client"""
        current = asyncio.current_task()
        tasks = [t for t in (self._listener_task, self._heartbeat_task) if t and t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listener_task = None
        self._heartbeat_task = None

        for request in self._requests:
            request.cancel()

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:
                logger.debug(f"Error disconnecting MA client: {e}")

        session, self._http_session = self._http_session, None
        if session is not None and not session.closed:
            await session.close()

    async def _handle_drop(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        logger.info(f"Music Assistant connection dropped: {reason}")
        await self._release()
        await self._report_drop(reason)

    # === Background tasks ===

    async def _listen(self) -> None:
        """Run the client's message loop; when it ends the connection is gone"""
        try:
            await self._client.start_listening()
            reason = "Server closed the connection"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = str(e) or type(e).__name__
        await self._handle_drop(reason)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.send_command(MUSIC_ASSISTANT["heartbeat_command"])
            except CommandError:
                # The server answered, so the socket is alive
                continue
            except TransportError as e:
                await self._handle_drop(f"Heartbeat failed: {e}")
                return

    # === Commands ===

    async def send_command(self, command: str, **args: Any) -> Any:
        """
        Send a command through the client and wait for its result.

        Raises:
            CommandError: the server answered with an error
            TransportTimeout: no answer within the command timeout
            TransportError: the channel is closed or failed
        """
        if not self.connected:
            raise TransportError(f"Cannot send {command}: not connected")
        if len(self._requests) >= self._max_pending:
            raise TransportError(f"Cannot send {command}: {len(self._requests)} requests pending")

        request = asyncio.ensure_future(self._client.send_command(command, **args))
        self._requests.add(request)
        try:
            done, _ = await asyncio.wait({request}, timeout=self._command_timeout)
            if not done:
                raise TransportTimeout(f"{command} timed out after {self._command_timeout}s")
            if request.cancelled():
                raise TransportError(f"{command} failed: connection closed")
            return request.result()
        except MusicAssistantError as e:
            raise CommandError(command, getattr(e, "error_code", None), str(e)) from e
        except TransportError:
            raise
        except Exception as e:
            raise TransportError(f"{command} failed: {e}") from e
        finally:
            if not request.done():
                request.cancel()
            self._requests.discard(request)

    @staticmethod
    def _extract_token(result: Any) -> Optional[str]:
        if isinstance(result, str):
            return result or None
        if isinstance(result, dict):
            return result.get("access_token") or result.get("token")
        return None

    async def authenticate_with_token(self, token: str) -> bool:
        try:
            result = await self.send_command(MUSIC_ASSISTANT["auth_command"], token=token)
        except CommandError as e:
            logger.debug(f"Token rejected: {e.error_code}")
            return False
        if isinstance(result, dict) and result.get("authenticated") is False:
            return False
        self._authenticated = True
        return True

    async def login_with_credentials(self, username: str, password: str) -> Optional[str]:
        try:
            result = await self.send_command(
                MUSIC_ASSISTANT["login_command"], username=username, password=password
            )
        except CommandError as e:
            logger.debug(f"Login rejected: {e.error_code}")
            return None
        token = self._extract_token(result)
        if token:
            self._authenticated = True
        return token

    async def create_long_lived_token(self, name: str) -> Optional[str]:
        try:
            result = await self.send_command(MUSIC_ASSISTANT["create_token_command"], name=name)
        except CommandError as e:
            logger.debug(f"Token creation refused: {e.error_code}")
            return None
        return self._extract_token(result)

    async def get_current_user_info(self) -> Optional[Dict[str, Any]]:
        result = await self.send_command(MUSIC_ASSISTANT["user_info_command"])
        return result if isinstance(result, dict) else None


def create_transport(address: str) -> MusicAssistantTransport:
    """Default transport factory for SessionCoordinator"""
    return MusicAssistantTransport(address)
