"""
Ensemble Settings Manager
Handles dynamic configuration management using settings.json
"""

import json
import shutil
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass
from logging_config import get_logger

logger = get_logger(__name__)

# Allow overriding the settings file location via environment variable
# (needed for container persistence)
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

SETTINGS_FILE = Path(os.getenv("ENSEMBLE_SETTINGS_FILE", str(ROOT_DIR / "settings.json")))

@dataclass
class Setting:
    """Represents a single configurable setting"""
    name: str
    type: type
    default: Any
    requires_restart: bool = False
    category: Optional[str] = None
    description: Optional[str] = None
    min_val: Optional[float] = None
    max_val: Optional[float] = None

    def validate_and_convert(self, value: Any) -> Any:
        try:
            if self.type == bool and isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')

            converted = self.type(value)
            if self.min_val is not None and converted < self.min_val:
                return self.default
            if self.max_val is not None and converted > self.max_val:
                return self.default
            return converted
        except (ValueError, TypeError):
            return self.default

class SettingsManager:
    def __init__(self, settings_file: Path = SETTINGS_FILE):
        self._settings: Dict[str, Any] = {}
        self._file = Path(settings_file)

        # Define all available settings
        self._definitions = {
            # Debug
            "debug.enabled": Setting("Debug Mode", bool, False, True, "Debug", "Enable debug features"),
            "debug.log_file": Setting("Log File", str, "ensemble.log", True, "Debug", "Log file name"),
            "debug.log_level": Setting("Log Level", str, "INFO", True, "Debug", "Logging verbosity"),
            "debug.log_to_console": Setting("Log to Console", bool, True, False, "Debug", "Print logs to terminal"),
            "debug.log_detailed": Setting("Detailed Logging", bool, False, False, "Debug", "Write DEBUG records to the log file"),
            "debug.max_entries": Setting("Recent Log Size", int, 1000, True, "Debug", "Entries kept in memory for bug reports", min_val=50, max_val=10000),
            "debug.log_rotation.max_bytes": Setting("Max Log Size", int, 1048576, True, "Debug", "Max log file size (bytes)"),
            "debug.log_rotation.backup_count": Setting("Log Backups", int, 10, True, "Debug", "Number of backups to keep"),

            # Connection
            "connection.client_name": Setting("Client Name", str, "Ensemble", False, "Connection", "Name attached to tokens minted on login"),
            "connection.auto_connect": Setting("Auto Connect", bool, True, False, "Connection", "Connect to the last server on startup"),

            # Timings (seconds)
            "timings.connection_timeout": Setting("Connection Timeout", float, 10.0, False, "Timings", "Websocket handshake timeout (s)", min_val=1.0, max_val=60.0),
            "timings.command_timeout": Setting("Command Timeout", float, 30.0, False, "Timings", "Request timeout (s)", min_val=1.0, max_val=120.0),
            "timings.heartbeat_interval": Setting("Heartbeat Interval", float, 30.0, False, "Timings", "Keep-alive probe interval (s)", min_val=5.0, max_val=300.0),
            "timings.reconnect_delay": Setting("Reconnect Delay", float, 3.0, False, "Timings", "Delay between reconnect checks (s)", min_val=0.5, max_val=60.0),

            # Network
            "network.default_ws_port": Setting("Default Port", int, 8095, True, "Network", "Port used when the address has none", min_val=1, max_val=65535),
            "network.max_pending_requests": Setting("Max Pending Requests", int, 100, True, "Network", "In-flight request cap", min_val=1, max_val=1000),

            # Music Assistant wire commands
            "music_assistant.auth_command": Setting("Auth Command", str, "auth", True, "Music Assistant", "Token authentication command"),
            "music_assistant.login_command": Setting("Login Command", str, "auth/login", True, "Music Assistant", "Credential login command"),
            "music_assistant.create_token_command": Setting("Token Command", str, "auth/token/create", True, "Music Assistant", "Long-lived token command"),
            "music_assistant.user_info_command": Setting("User Info Command", str, "auth/me", True, "Music Assistant", "Current user command"),
            "music_assistant.heartbeat_command": Setting("Heartbeat Command", str, "info", True, "Music Assistant", "Keep-alive command"),

            # Sleep timer
            "sleep_timer.tick_interval": Setting("Countdown Refresh", float, 1.0, False, "Sleep Timer", "Countdown refresh interval (s)", min_val=0.1, max_val=10.0),
        }

        self.load_settings()

    def load_settings(self) -> None:
        """Load settings from JSON, fall back to defaults"""
        self._settings = {}

        # 1. Load defaults first
        for key, definition in self._definitions.items():
            self._settings[key] = definition.default

        # 2. Load from JSON if exists
        if self._file.exists():
            try:
                with open(self._file, 'r') as f:
                    saved = json.load(f)
                for key, val in saved.items():
                    # Keep unknown keys as-is so newer files survive a downgrade
                    if key in self._definitions:
                        self._settings[key] = self._definitions[key].validate_and_convert(val)
                    else:
                        self._settings[key] = val
            except (OSError, ValueError, AttributeError) as e:
                logger.error(f"Failed to load {self._file.name}: {e} - resetting to defaults")
                backup_path = self._file.with_suffix('.json.corrupted')
                try:
                    shutil.copy2(self._file, backup_path)
                    logger.info(f"Backed up corrupted settings to {backup_path}")
                except OSError as copy_error:
                    logger.warning(f"Could not back up corrupted settings: {copy_error}")
                self.save_to_config()
        else:
            logger.info(f"Creating default settings file at {self._file}")
            self.save_to_config()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a setting value.
        Priority:
        1. Loaded value (from JSON or Schema Default)
        2. Schema Default (if key in definitions but not in settings dict yet)
        3. Provided 'default' argument (if key unknown)
        """
        if key in self._settings:
            return self._settings[key]

        if key in self._definitions:
            return self._definitions[key].default

        return default

    def set(self, key: str, value: Any) -> bool:
        """Set a known setting. Returns True when the change needs a restart."""
        if key not in self._definitions:
            return False

        setting = self._definitions[key]
        self._settings[key] = setting.validate_and_convert(value)
        return setting.requires_restart

    def save_to_config(self) -> None:
        """Save current memory settings to JSON file"""
        # Unique temp name so simultaneous saves never clobber each other's temp file
        temp_path = self._file.parent / f"settings_{uuid.uuid4().hex}.json.tmp"
        try:
            with open(temp_path, 'w') as f:
                json.dump(self._settings, f, indent=4, sort_keys=True)
            os.replace(temp_path, self._file)
        except OSError as e:
            logger.error(f"Failed to save settings: {e}")
            if temp_path.exists():
                try:
                    os.remove(temp_path)
                except OSError:
                    pass


settings = SettingsManager()
