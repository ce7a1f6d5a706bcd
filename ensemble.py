"""
Ensemble headless session runner.

Connects to a Music Assistant server, logs lifecycle events and keeps the
session alive by calling check_and_reconnect() at a fixed interval until
interrupted.

    python ensemble.py --server 192.168.1.10 --username me --password secret
    python ensemble.py              # reconnect to the stored server
    python ensemble.py --logout
"""
import argparse
import asyncio
import sys

from config import CONNECTION, DEBUG, STATE_FILE, TIMINGS, VERSION
from logging_config import generate_bug_report, get_logger, setup_logging
from session import (
    Authenticated,
    Disconnected,
    Failed,
    LifecycleBus,
    Ready,
    SessionCoordinator,
    SessionError,
    StateChanged,
)
from session.music_assistant import create_transport
from state_manager import StateStore

logger = get_logger(__name__)


def log_event(event) -> None:
    """Bus handler that writes lifecycle events to the log"""
    if isinstance(event, StateChanged):
        logger.debug(f"State: {event.previous.value} -> {event.current.value}")
    elif isinstance(event, Ready):
        logger.info(f"Ready: {event.address} (no authentication)")
    elif isinstance(event, Authenticated):
        logger.info(f"Ready: {event.address} as {event.owner_name or 'unknown user'}")
    elif isinstance(event, Disconnected):
        logger.warning(f"Disconnected from {event.address} (cached data kept)")
    elif isinstance(event, Failed):
        logger.error(f"Connection error: {event.message}")


async def run(args: argparse.Namespace) -> int:
    store = StateStore(STATE_FILE)
    bus = LifecycleBus()
    bus.subscribe_all(log_event)
    coordinator = SessionCoordinator(store, create_transport, bus=bus)

    if args.logout:
        await coordinator.logout()
        print("Stored credentials removed.")
        return 0

    try:
        if args.server and args.username and args.password:
            await coordinator.login(args.server, args.username, args.password)
        elif args.server:
            await coordinator.connect(args.server)
        elif CONNECTION["auto_connect"]:
            if not await coordinator.start():
                logger.error("No server stored. Pass --server to connect.")
                return 1
    except SessionError as e:
        logger.error(f"Initial connection failed: {e}")
        print(e.user_message, file=sys.stderr)

    try:
        while True:
            await asyncio.sleep(TIMINGS["reconnect_delay"])
            await coordinator.check_and_reconnect()
    except asyncio.CancelledError:
        logger.info("Main loop cancelled...")
    finally:
        await coordinator.close()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=f"Ensemble session runner {VERSION}")
    parser.add_argument("--server", help="Music Assistant server address (host, host:port or URL)")
    parser.add_argument("--username", help="Username for servers that require login")
    parser.add_argument("--password", help="Password for servers that require login")
    parser.add_argument("--logout", action="store_true", help="Forget stored token and credentials")
    parser.add_argument("--bug-report", action="store_true", help="Print recent log entries on exit")
    args = parser.parse_args(argv)

    setup_logging(
        console_level=DEBUG.get("log_level", "INFO"),
        file_level="DEBUG" if DEBUG.get("log_detailed", False) else "INFO",
        console=DEBUG.get("log_to_console", True),
        log_file=DEBUG.get("log_file", "ensemble.log"),
        max_entries=DEBUG["max_entries"],
        max_bytes=DEBUG["log_rotation"]["max_bytes"],
        backup_count=DEBUG["log_rotation"]["backup_count"],
    )

    try:
        logger.info(f"Starting Ensemble {VERSION}...")
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt caught in main...")
        return 0
    finally:
        if args.bug_report:
            print(generate_bug_report())


if __name__ == "__main__":
    sys.exit(main())
