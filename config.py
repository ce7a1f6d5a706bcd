"""
Ensemble Session Configuration Loader
Loads values from settings.json via the settings manager.
"""
import os
import sys
from pathlib import Path
from dotenv import load_dotenv

from settings import settings

# ==========================================
# Path Configuration
# ==========================================
if "__compiled__" in globals() or getattr(sys, 'frozen', False):
    ROOT_DIR = Path(sys.executable).parent
else:
    ROOT_DIR = Path(__file__).parent

# ==========================================
# Version
# ==========================================
VERSION = "0.9.0"

# Only load .env if it exists
env_file = ROOT_DIR / '.env'
if env_file.exists():
    load_dotenv(env_file)

# Helper to prefer Env Var > Settings JSON > Default
def conf(key, default=None):
    # 1. Check Env Var (Highest Priority - good for docker/dev)
    env_val = os.getenv(key.upper().replace('.', '_'))
    if env_val is not None:
        return env_val

    # 2. Check Settings JSON
    json_val = settings.get(key)
    if json_val is not None:
        return json_val

    # 3. Default
    return default


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ('true', '1', 'yes', 'on')
    return bool(value)

# ==========================================
# EXPORTED CONFIG DICTS
# ==========================================

STATE_FILE = Path(os.getenv("ENSEMBLE_STATE_FILE", str(ROOT_DIR / "state.json")))

DEBUG = {
    "enabled": _as_bool(conf("debug.enabled", False)),
    "log_file": conf("debug.log_file", "ensemble.log"),
    # Default to WARNING for frozen builds (less log noise in production)
    "log_level": conf("debug.log_level", "WARNING" if getattr(sys, 'frozen', False) else "INFO"),
    "log_to_console": _as_bool(conf("debug.log_to_console", not getattr(sys, 'frozen', False))),
    "log_detailed": _as_bool(conf("debug.log_detailed", False)),
    "max_entries": int(conf("debug.max_entries", 1000)),
    "log_rotation": {
        "max_bytes": int(conf("debug.log_rotation.max_bytes", 1048576)),
        "backup_count": int(conf("debug.log_rotation.backup_count", 10))
    }
}

# All durations in seconds
TIMINGS = {
    # Initial websocket handshake
    "connection_timeout": float(conf("timings.connection_timeout", 10.0)),
    # Single request/response round trip
    "command_timeout": float(conf("timings.command_timeout", 30.0)),
    # Keep-alive probe used to detect half-open connections
    "heartbeat_interval": float(conf("timings.heartbeat_interval", 30.0)),
    # Delay between external reconnect checks
    "reconnect_delay": float(conf("timings.reconnect_delay", 3.0)),
}

NETWORK = {
    "default_ws_port": int(conf("network.default_ws_port", 8095)),
    "default_https_port": 443,
    "default_http_port": 80,
    # Cap on in-flight websocket requests to avoid unbounded growth
    "max_pending_requests": int(conf("network.max_pending_requests", 100)),
}

CONNECTION = {
    "client_name": conf("connection.client_name", "Ensemble"),
    "auto_connect": _as_bool(conf("connection.auto_connect", True)),
}

# Wire command names of the Music Assistant server API
MUSIC_ASSISTANT = {
    "auth_command": conf("music_assistant.auth_command", "auth"),
    "login_command": conf("music_assistant.login_command", "auth/login"),
    "create_token_command": conf("music_assistant.create_token_command", "auth/token/create"),
    "user_info_command": conf("music_assistant.user_info_command", "auth/me"),
    "heartbeat_command": conf("music_assistant.heartbeat_command", "info"),
}

SLEEP_TIMER = {
    # Countdown display refresh (cosmetic only)
    "tick_interval": float(conf("sleep_timer.tick_interval", 1.0)),
}
