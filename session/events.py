"""
Lifecycle events and the observer bus that delivers them.

Handlers are called one at a time in subscription order and awaited before
the next one runs, so every observer sees events in the order the
transitions happened. A failing handler is logged and skipped; it never
breaks delivery to the others or reaches the publisher.
"""
from __future__ import annotations

import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from logging_config import get_logger

from .state import ConnectionState

logger = get_logger(__name__)


@dataclass(frozen=True)
class StateChanged:
    previous: ConnectionState
    current: ConnectionState
    error: Optional[str] = None


@dataclass(frozen=True)
class Ready:
    """Connected to a server that does not require authentication"""
    address: str


@dataclass(frozen=True)
class Authenticated:
    address: str
    owner_name: Optional[str] = None


@dataclass(frozen=True)
class Disconnected:
    """Left a live state. Cached data stays valid for instant resume."""
    address: Optional[str]
    previous: ConnectionState


@dataclass(frozen=True)
class Failed:
    message: str


LifecycleEvent = Union[StateChanged, Ready, Authenticated, Disconnected, Failed]
Handler = Callable[[Any], Union[None, Awaitable[None]]]

ALL_EVENTS = "*"


class LifecycleBus:
    """Ordered publish/subscribe for lifecycle events"""

    def __init__(self, name: str = "session"):
        self.name = name
        self._handlers: Dict[Any, List[Handler]] = defaultdict(list)
        self.event_counts: Dict[str, int] = defaultdict(int)

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register a handler for one event type. Returns an unsubscribe callable."""
        self._handlers[event_type].append(handler)
        return lambda: self._remove(event_type, handler)

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for every event type"""
        return self.subscribe(ALL_EVENTS, handler)

    def _remove(self, key: Any, handler: Handler) -> None:
        handlers = self._handlers.get(key)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Any = None) -> int:
        if event_type is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> None:
        """Deliver an event to its typed handlers, then to wildcard handlers"""
        self.event_counts[type(event).__name__] += 1
        # Snapshot so handlers may unsubscribe while being called
        handlers = list(self._handlers.get(type(event), [])) + list(self._handlers.get(ALL_EVENTS, []))
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[{self.name}] handler {getattr(handler, '__name__', handler)!r} "
                             f"failed on {type(event).__name__}: {e}", exc_info=True)
