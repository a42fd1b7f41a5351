"""
Session heartbeat.

While a session is connected the client tells the relay it is still alive.
A heartbeat is sent on start, every ``heartbeat_interval`` seconds, and
whenever the consuming view becomes visible again. Consecutive not-found or
forbidden answers mean the relay has already ended the session.
"""

import logging
import threading
from typing import Awaitable, Callable, Optional

import httpx

from termrelay.client.api import HeartbeatResult, RelayApiClient
from termrelay.config import TransportConfig
from termrelay.errors import AuthExpired
from termrelay.scheduling import PeriodicTask

logger = logging.getLogger(__name__)

TerminatedCallback = Callable[[AuthExpired], Awaitable[None]]

REJECTED = (HeartbeatResult.NOT_FOUND, HeartbeatResult.FORBIDDEN)


def send_beacon(url: str, timeout: float = 2.0) -> threading.Thread:
    """
    Fire-and-forget POST on a daemon thread.

    The caller never waits for it, so it cannot hold up process teardown.
    """

    def _post() -> None:
        try:
            httpx.post(url, timeout=timeout)
            logger.debug("Final heartbeat delivered")
        except httpx.HTTPError as e:
            logger.warning(f"Final heartbeat failed: {e}")

    thread = threading.Thread(target=_post, name="heartbeat-beacon", daemon=True)
    thread.start()
    return thread


class SessionHeartbeat:
    """Periodic keep-alive for one session."""

    def __init__(
        self,
        api: RelayApiClient,
        session_id: str,
        config: Optional[TransportConfig] = None,
        on_terminated: Optional[TerminatedCallback] = None,
    ):
        """
        Args:
            api: Relay API client used for heartbeat requests
            session_id: Session being kept alive
            config: Interval and failure threshold
            on_terminated: Awaited once when the relay has ended the session
        """
        self.api = api
        self.session_id = session_id
        self.config = config or TransportConfig()
        self.on_terminated = on_terminated

        self.consecutive_rejections = 0
        self.sent = 0
        self._active = False
        self._task = PeriodicTask(
            self.config.heartbeat_interval,
            self.beat,
            name=f"heartbeat-{session_id}",
            run_immediately=True,
        )

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Send one heartbeat now and then every interval."""
        if self._active:
            return
        self._active = True
        self._task.start()
        logger.info(f"Session heartbeat started for session: {self.session_id}")

    async def stop(self) -> None:
        """Stop the timer. No heartbeat fires after this returns."""
        if not self._active:
            return
        self._active = False
        await self._task.stop()
        logger.info(f"Session heartbeat stopped for session: {self.session_id}")

    async def beat(self) -> HeartbeatResult:
        """Send one heartbeat and act on the answer."""
        if not self._active:
            return HeartbeatResult.FAILED

        result = await self.api.heartbeat(self.session_id)
        self.sent += 1

        if result is HeartbeatResult.OK:
            self.consecutive_rejections = 0
            logger.debug(f"Heartbeat sent for session: {self.session_id}")
            return result

        if result not in REJECTED:
            # Transient failures break the streak; only authoritative answers count.
            self.consecutive_rejections = 0
            return result

        self.consecutive_rejections += 1
        logger.warning(
            f"Heartbeat rejected for session {self.session_id}: {result.value} "
            f"({self.consecutive_rejections}/{self.config.max_heartbeat_failures})"
        )
        if self.consecutive_rejections >= self.config.max_heartbeat_failures:
            await self._terminate(result)
        return result

    async def on_visible(self) -> None:
        """The consuming view regained visibility: heartbeat immediately."""
        if self._active:
            await self.beat()

    def send_final(self) -> Optional[threading.Thread]:
        """Best-effort last heartbeat on teardown, without blocking."""
        if not self._active:
            return None
        try:
            return send_beacon(self.api.heartbeat_url(self.session_id))
        except RuntimeError as e:
            logger.warning(f"Failed to send final heartbeat for {self.session_id}: {e}")
            return None

    async def _terminate(self, result: HeartbeatResult) -> None:
        status = 404 if result is HeartbeatResult.NOT_FOUND else 403
        await self.stop()
        error = AuthExpired(
            f"session {self.session_id} ended by the relay ({result.value})", status_code=status
        )
        if self.on_terminated is not None:
            await self.on_terminated(error)
