"""
Built-in playback engine binding.

The local playback engine (the one that turns this device into a player on
the server) has to follow the session: started once each time the session
becomes usable and stopped once each time it stops being usable. The
binding subscribes to the lifecycle bus and enforces that.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from logging_config import get_logger

from .events import Authenticated, Disconnected, Failed, LifecycleBus, Ready

logger = get_logger(__name__)


class PlaybackEngine(ABC):
    """Local player driven by the session lifecycle"""

    @abstractmethod
    async def start(self, address: str) -> None:
        """Register with the server at address and start accepting playback"""

    @abstractmethod
    async def stop(self) -> None:
        """Unregister and release audio resources"""


class PlaybackEngineBinding:
    """
    Starts and stops one engine in lockstep with the session.

    engine_factory is called for every start, so each usable period gets a
    fresh engine.
    """

    def __init__(self, bus: LifecycleBus, engine_factory: Callable[[], PlaybackEngine]):
        self._engine_factory = engine_factory
        self._engine: Optional[PlaybackEngine] = None
        self._unsubscribers: List[Callable[[], None]] = [
            bus.subscribe(Ready, self._on_usable),
            bus.subscribe(Authenticated, self._on_usable),
            bus.subscribe(Disconnected, self._on_unusable),
            bus.subscribe(Failed, self._on_unusable),
        ]

    @property
    def engine(self) -> Optional[PlaybackEngine]:
        return self._engine

    @property
    def running(self) -> bool:
        return self._engine is not None

    async def _on_usable(self, event) -> None:
        if self._engine is not None:
            # A new usable period without a stop in between: replace the engine
            await self._stop_engine()
        engine = self._engine_factory()
        self._engine = engine
        logger.info(f"Starting playback engine for {event.address}")
        try:
            await engine.start(event.address)
        except Exception as e:
            logger.error(f"Playback engine failed to start: {e}", exc_info=True)
            self._engine = None

    async def _on_unusable(self, event) -> None:
        await self._stop_engine()

    async def _stop_engine(self) -> None:
        engine, self._engine = self._engine, None
        if engine is None:
            return
        logger.info("Stopping playback engine")
        try:
            await engine.stop()
        except Exception as e:
            logger.error(f"Playback engine failed to stop: {e}", exc_info=True)

    async def detach(self) -> None:
        """Unsubscribe from the bus and stop a running engine"""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        await self._stop_engine()
