"""
Sleep timer: pause playback after a number of minutes or at the end of the current track.

Timing goes through a scheduler object with call_later(delay, callback) and
time(). The running asyncio loop provides both; tests pass a fake clock.
"""
import asyncio
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from config import SLEEP_TIMER
from logging_config import get_logger

logger = get_logger(__name__)

END_OF_TRACK = -1


class SleepTimerMode(Enum):
    OFF = "off"
    END_OF_TRACK = "end_of_track"
    MINUTES = "minutes"


class SleepTimer:
    """
    Single pause trigger with two pending handles at most: the deadline and
    the countdown refresh tick. Every transition cancels both first.
    """

    def __init__(self, scheduler=None, tick_interval: Optional[float] = None):
        self._scheduler = scheduler
        self._tick_interval = tick_interval or SLEEP_TIMER["tick_interval"]
        self._minutes: Optional[int] = None
        self._deadline: Optional[float] = None
        self._end_time: Optional[datetime] = None
        self._deadline_handle = None
        self._tick_handle = None
        self._expired_listeners: List[Callable[[], None]] = []
        self._change_listeners: List[Callable[[], None]] = []

    def _get_scheduler(self):
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    # === State ===

    @property
    def minutes(self) -> Optional[int]:
        """None = off, -1 = end of track, positive = minutes"""
        return self._minutes

    @property
    def is_active(self) -> bool:
        return self._minutes is not None

    @property
    def mode(self) -> SleepTimerMode:
        if self._minutes is None:
            return SleepTimerMode.OFF
        if self._minutes == END_OF_TRACK:
            return SleepTimerMode.END_OF_TRACK
        return SleepTimerMode.MINUTES

    @property
    def end_time(self) -> Optional[datetime]:
        """Wall-clock expiry time in minutes mode"""
        return self._end_time

    @property
    def remaining(self) -> Optional[timedelta]:
        """Time left in minutes mode, never negative. None otherwise."""
        if self._deadline is None:
            return None
        left = self._deadline - self._get_scheduler().time()
        return timedelta(seconds=max(0.0, left))

    # === Listeners ===

    def add_expired_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Called once when the timer fires. Returns a remover."""
        self._expired_listeners.append(callback)
        return lambda: self._expired_listeners.remove(callback) if callback in self._expired_listeners else None

    def add_change_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Called on every state change and countdown tick. Returns a remover."""
        self._change_listeners.append(callback)
        return lambda: self._change_listeners.remove(callback) if callback in self._change_listeners else None

    def _notify(self, listeners: List[Callable[[], None]]) -> None:
        for callback in list(listeners):
            try:
                callback()
            except Exception as e:
                logger.error(f"Sleep timer listener failed: {e}", exc_info=True)

    # === Control ===

    def _cancel_handles(self) -> None:
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _reset(self) -> None:
        self._cancel_handles()
        self._minutes = None
        self._deadline = None
        self._end_time = None

    def set_timer(self, minutes: Optional[int]) -> None:
        """
        None turns the timer off, -1 waits for the end of the current track,
        a positive number counts down that many minutes.

        Raises:
            ValueError: minutes is 0 or below -1
        """
        if minutes is not None and minutes != END_OF_TRACK and minutes <= 0:
            raise ValueError(f"Invalid sleep timer minutes: {minutes}")

        self._reset()
        self._minutes = minutes

        if minutes is None:
            logger.info("Sleep timer: OFF")
        elif minutes == END_OF_TRACK:
            logger.info("Sleep timer: end of track")
        else:
            scheduler = self._get_scheduler()
            delay = minutes * 60.0
            self._deadline = scheduler.time() + delay
            self._end_time = datetime.now() + timedelta(minutes=minutes)
            self._deadline_handle = scheduler.call_later(delay, self._on_deadline)
            self._tick_handle = scheduler.call_later(self._tick_interval, self._on_tick)
            logger.info(f"Sleep timer: {minutes} minutes (until {self._end_time:%H:%M:%S})")

        self._notify(self._change_listeners)

    def cancel(self) -> None:
        """Turn the timer off without firing"""
        was_active = self.is_active
        self._reset()
        if was_active:
            logger.info("Sleep timer: cancelled")
        self._notify(self._change_listeners)

    def check_end_of_track(self) -> bool:
        """
        Call when a track finishes. Fires in end-of-track mode only.

        Returns:
            True if the timer fired
        """
        if self._minutes != END_OF_TRACK:
            return False
        logger.info("End of track sleep timer triggered")
        self._fire()
        return True

    def dispose(self) -> None:
        self._reset()
        self._expired_listeners.clear()
        self._change_listeners.clear()

    def _fire(self) -> None:
        self._reset()
        self._notify(self._expired_listeners)
        self._notify(self._change_listeners)

    def _on_deadline(self) -> None:
        self._deadline_handle = None
        logger.info("Sleep timer expired - pausing playback")
        self._fire()

    def _on_tick(self) -> None:
        self._tick_handle = None
        if self.mode is not SleepTimerMode.MINUTES:
            return
        self._tick_handle = self._get_scheduler().call_later(self._tick_interval, self._on_tick)
        self._notify(self._change_listeners)
