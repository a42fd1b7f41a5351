"""
Stale session monitor.

Closes active sessions whose client stopped sending heartbeats, so a browser
that vanished without a clean close does not keep a shell open forever, and
drops ended sessions from the table once they are older than the timeout.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from termrelay.config import MonitorConfig
from termrelay.scheduling import PeriodicTask
from termrelay.session.models import SessionRegistry

logger = logging.getLogger(__name__)

TerminateCallback = Callable[[str], Awaitable[None]]


class SessionMonitor:
    """Periodically reaps sessions without a recent heartbeat."""

    def __init__(
        self,
        registry: SessionRegistry,
        config: Optional[MonitorConfig] = None,
        on_terminate: Optional[TerminateCallback] = None,
    ):
        """
        Args:
            registry: Session table to inspect
            config: Check interval and session timeout
            on_terminate: Awaited with the id of each session closed as stale
        """
        self.registry = registry
        self.config = config or MonitorConfig()
        self.on_terminate = on_terminate
        self.terminated_total = 0
        self.evicted_total = 0
        self._task = PeriodicTask(self.config.check_interval, self._check, name="session-monitor")

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()
        logger.info(
            f"Session monitor started (interval {self.config.check_interval}s, "
            f"timeout {self.config.session_timeout}s)"
        )

    async def stop(self) -> None:
        await self._task.stop()
        logger.info("Session monitor stopped")

    async def check_now(self) -> List[str]:
        """
        Close every stale session now and forget long-ended ones.

        Returns:
            Ids of the sessions closed as stale
        """
        closed = []
        for session in self.registry.stale(self.config.session_timeout):
            logger.warning(
                f"Session {session.id} has no heartbeat for over "
                f"{self.config.session_timeout:.0f}s, closing"
            )
            self.registry.close(session.id)
            closed.append(session.id)
            self.terminated_total += 1
            if self.on_terminate is not None:
                try:
                    await self.on_terminate(session.id)
                except Exception as e:
                    logger.error(f"Failed to terminate session {session.id}: {e}", exc_info=True)
        if closed:
            logger.info(f"Closed {len(closed)} stale session(s)")
        self.evicted_total += len(self.registry.evict(self.config.session_timeout))
        return closed

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "check_interval": self.config.check_interval,
            "session_timeout": self.config.session_timeout,
            "terminated_total": self.terminated_total,
            "evicted_total": self.evicted_total,
        }

    async def _check(self) -> None:
        await self.check_now()
