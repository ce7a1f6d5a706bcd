"""
Persistent client state (server address, auth token, credentials, owner name).

Stored as one JSON document. Keys use dotted notation ("auth.token") and are
resolved with benedict. Writes go through a unique temp file and an atomic
replace, reads are cached briefly to avoid hitting the disk on every call.
"""
import asyncio
import copy
import json
import os
import threading
import time
import uuid
from functools import partial
from pathlib import Path
from typing import Any, Optional, Union

from benedict import benedict

from config import STATE_FILE
from logging_config import get_logger
from session.errors import PersistenceError

logger = get_logger(__name__)

SERVER_URL_KEY = "connection.server_url"
TOKEN_KEY = "auth.token"
USERNAME_KEY = "auth.username"
PASSWORD_KEY = "auth.password"
OWNER_NAME_KEY = "profile.owner_name"

# Cache for 2 seconds to reduce disk I/O
STATE_CACHE_TTL = 2.0


class StateStore:
    """JSON-file key-value store used as the session's persistence collaborator"""

    def __init__(self, path: Union[str, Path] = STATE_FILE, cache_ttl: float = STATE_CACHE_TTL):
        self.path = Path(path)
        self._cache_ttl = cache_ttl
        self._state: Optional[dict] = None
        self._state_time = 0.0
        # Re-entrant: set_value() reads the current document while holding the lock
        self._lock = threading.RLock()

    # === Whole document ===

    def get_state(self) -> dict:
        """
        Return the stored document (a copy).

        Raises:
            PersistenceError: the file exists but cannot be read or parsed
        """
        now = time.time()
        with self._lock:
            if self._state is not None and (now - self._state_time) < self._cache_ttl:
                return copy.deepcopy(self._state)

            if not self.path.exists():
                self._state = {}
                self._state_time = now
                return {}

            try:
                with open(self.path, "r") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to read state file {self.path}: {e}")
                raise PersistenceError(f"Cannot read {self.path}: {e}") from e

            if not isinstance(data, dict):
                raise PersistenceError(f"Unexpected content in {self.path}")

            self._state = data
            self._state_time = now
            return copy.deepcopy(data)

    def set_state(self, new_state: dict) -> None:
        """
        Replace the stored document.

        Raises:
            PersistenceError: the file could not be written
        """
        with self._lock:
            temp_path = self.path.parent / f"state_{uuid.uuid4().hex}.json.tmp"
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_path, "w") as f:
                    json.dump(new_state, f, indent=4)
                os.replace(temp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                if temp_path.exists():
                    try:
                        os.remove(temp_path)
                    except OSError:
                        pass
                logger.error(f"Failed to write state file {self.path}: {e}")
                raise PersistenceError(f"Cannot write {self.path}: {e}") from e

            self._state = copy.deepcopy(new_state)
            self._state_time = time.time()

    # === Dotted keys ===

    def get_value(self, key: str, default: Any = None) -> Any:
        state = benedict(self.get_state(), keypath_separator=".")
        return state.get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        """Set a dotted key. None or "" removes it."""
        with self._lock:
            state = benedict(self.get_state(), keypath_separator=".")
            if value is None or value == "":
                if key not in state:
                    return
                del state[key]
            else:
                state[key] = value
            self.set_state(state.dict())

    def remove_keys(self, *keys: str) -> None:
        with self._lock:
            state = benedict(self.get_state(), keypath_separator=".")
            removed = False
            for key in keys:
                if key in state:
                    del state[key]
                    removed = True
            if removed:
                self.set_state(state.dict())

    async def _run(self, func, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    # === Async accessors used by the session core ===

    async def get_server_url(self) -> Optional[str]:
        return await self._run(self.get_value, SERVER_URL_KEY)

    async def set_server_url(self, url: Optional[str]) -> None:
        await self._run(self.set_value, SERVER_URL_KEY, url)

    async def get_ma_auth_token(self) -> Optional[str]:
        return await self._run(self.get_value, TOKEN_KEY)

    async def set_ma_auth_token(self, token: Optional[str]) -> None:
        await self._run(self.set_value, TOKEN_KEY, token)

    async def clear_ma_auth_token(self) -> None:
        await self._run(self.remove_keys, TOKEN_KEY)

    async def get_username(self) -> Optional[str]:
        return await self._run(self.get_value, USERNAME_KEY)

    async def set_username(self, username: Optional[str]) -> None:
        await self._run(self.set_value, USERNAME_KEY, username)

    async def get_password(self) -> Optional[str]:
        return await self._run(self.get_value, PASSWORD_KEY)

    async def set_password(self, password: Optional[str]) -> None:
        await self._run(self.set_value, PASSWORD_KEY, password)

    async def get_owner_name(self) -> Optional[str]:
        return await self._run(self.get_value, OWNER_NAME_KEY)

    async def set_owner_name(self, name: Optional[str]) -> None:
        await self._run(self.set_value, OWNER_NAME_KEY, name)

    async def clear_credentials(self) -> None:
        """Forget token, username and password (logout)"""
        await self._run(self.remove_keys, TOKEN_KEY, USERNAME_KEY, PASSWORD_KEY)
