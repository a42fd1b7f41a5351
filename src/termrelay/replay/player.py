"""
Playback clock for recorded sessions.

Virtual time advances at wall-clock rate times the speed multiplier while
playing and stands still while paused. A periodic tick recomputes the current
time, clamps it to the recording's duration and re-renders the view; reaching
the end pauses playback.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from termrelay.config import ReplayConfig
from termrelay.replay.engine import ReplayEngine
from termrelay.scheduling import PeriodicTask
from termrelay.view import TerminalView

logger = logging.getLogger(__name__)


class ReplayPlayer:
    """
    Drives a ReplayEngine against a view.

    The clock is anchored at (wall time, virtual time) whenever playback starts
    or the speed changes, so a speed change never resets virtual time.
    """

    def __init__(
        self,
        engine: ReplayEngine,
        view: TerminalView,
        config: Optional[ReplayConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            engine: Engine with a loaded recording
            view: Receives the cumulative buffer on every render
            config: Tick interval, seek settle delay and speed bounds
            clock: Monotonic wall clock in seconds (injectable for tests)
        """
        self.engine = engine
        self.view = view
        self.config = config or ReplayConfig()
        self._clock = clock

        self.current_time = 0.0
        self.speed = self.config.default_speed
        self.playing = False

        self._anchor_wall = 0.0
        self._anchor_virtual = 0.0
        self._last_rendered: Optional[int] = None
        self._ticker: Optional[PeriodicTask] = None
        self._resume_handle: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def duration(self) -> float:
        return self.engine.duration

    @property
    def finished(self) -> bool:
        return self.current_time >= self.duration

    def play(self) -> None:
        """Start or resume playback. At the end, playback restarts from 0."""
        if self._closed or self.playing or not self.engine.has_recording:
            return
        self._cancel_resume()
        if self.finished:
            self.current_time = 0.0
        self._anchor(self.current_time)
        self.playing = True
        self._start_ticker()
        logger.debug(f"Playback started at {self.current_time:.3f}s (speed {self.speed}x)")

    def pause(self) -> None:
        """Freeze virtual time at its current value."""
        self._cancel_resume()
        if self.playing:
            self.current_time = self._virtual_now()
            self.playing = False
        self._stop_ticker()

    def seek(self, target: float) -> None:
        """
        Jump to ``target`` seconds.

        Pauses, sets virtual time, re-renders from scratch, and resumes after a
        short settle delay if playback was active and the target is before the end.
        """
        if self._closed:
            return
        was_playing = self.playing
        self.pause()
        self.advance(target, force=True)
        if was_playing and self.current_time < self.duration:
            self._schedule_resume()

    def restart(self) -> None:
        """Pause and rewind to the beginning."""
        self.pause()
        self.current_time = 0.0
        self.render(force=True)

    def set_speed(self, speed: float) -> None:
        """
        Change the speed multiplier; takes effect on the next tick.

        Raises:
            ValueError: If speed is outside the configured bounds
        """
        if not self.config.min_speed <= speed <= self.config.max_speed:
            raise ValueError(
                f"speed {speed} outside [{self.config.min_speed}, {self.config.max_speed}]"
            )
        if self.playing:
            self._anchor(self._virtual_now())
        self.speed = speed

    def tick(self) -> None:
        """Advance virtual time and re-render. Auto-pauses at the end."""
        if not self.playing:
            return
        self.advance(self._virtual_now())
        if self.current_time >= self.duration:
            self.playing = False
            self._stop_ticker()
            logger.debug("Playback reached the end of the recording")

    def advance(self, virtual_time: float, force: bool = False) -> None:
        """Set virtual time (clamped to [0, duration]) and render it."""
        self.current_time = min(max(0.0, virtual_time), self.duration)
        self.render(force)

    def render(self, force: bool = False) -> None:
        """Push the buffer for the current time to the view if it changed."""
        visible = self.engine.events_until(self.current_time)
        if not force and visible == self._last_rendered:
            return
        self._last_rendered = visible
        self.view.render(self.engine.render_at(self.current_time))

    async def wait_finished(self) -> None:
        """Wait until playback stops."""
        while self.playing or self._resume_handle is not None:
            await asyncio.sleep(self.config.tick_interval)

    async def close(self) -> None:
        """Stop the tick timer and any pending resume. Safe to call twice."""
        self._closed = True
        self._cancel_resume()
        self.playing = False
        if self._ticker is not None:
            await self._ticker.stop()
            self._ticker = None

    def _virtual_now(self) -> float:
        return self._anchor_virtual + (self._clock() - self._anchor_wall) * self.speed

    def _anchor(self, virtual_time: float) -> None:
        self._anchor_wall = self._clock()
        self._anchor_virtual = virtual_time

    def _start_ticker(self) -> None:
        if self._ticker is None:
            self._ticker = PeriodicTask(self.config.tick_interval, self._on_tick, name="replay-tick")
        self._ticker.start()

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()

    async def _on_tick(self) -> None:
        self.tick()

    def _schedule_resume(self) -> None:
        loop = asyncio.get_running_loop()
        self._resume_handle = loop.call_later(self.config.seek_settle_delay, self._resume)

    def _resume(self) -> None:
        self._resume_handle = None
        self.play()

    def _cancel_resume(self) -> None:
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None
