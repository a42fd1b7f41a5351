"""
HTTP client for the relay's collaborator endpoints.

Covers terminal start/stop, heartbeats and recording fetch. Not-found and
forbidden answers map to distinct exceptions so callers can tell an
authoritative rejection from a transient failure.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from termrelay.errors import (
    AuthExpired,
    RecordingAbsent,
    RecordingLoadError,
    TargetForbidden,
    TargetNotFound,
    TransportConnectionError,
)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class HeartbeatResult(str, Enum):
    """Outcome of one heartbeat request."""

    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    FAILED = "failed"


@dataclass(frozen=True)
class StartedSession:
    """Answer of the terminal start endpoint."""

    session_id: str
    url: str


class RelayApiClient:
    """Thin async wrapper around the relay HTTP API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Relay base URL (http:// or https://)
            token: Access token sent as a bearer credential
            timeout: Request timeout in seconds
            client: Pre-built client, mainly for tests
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._owns_client = client is None

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RelayApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start_terminal(self, target_id: str) -> StartedSession:
        """
        Ask the relay to create a session against a target.

        Raises:
            TargetNotFound: Unknown target
            TargetForbidden: Caller may not use the target
            AuthExpired: Token rejected
            TransportConnectionError: Any other failure
        """
        response = await self._request("POST", f"{API_PREFIX}/terminal/start/{target_id}")
        if response.status_code == 404:
            raise TargetNotFound(f"target {target_id} not found")
        if response.status_code == 403:
            raise TargetForbidden(f"target {target_id} is not allowed")
        if response.status_code == 401:
            raise AuthExpired("access token rejected", status_code=401)
        if response.status_code != 200:
            raise TransportConnectionError(
                f"terminal start failed with HTTP {response.status_code}"
            )
        body = response.json()
        return StartedSession(session_id=body["session_id"], url=body["url"])

    async def stop_terminal(self, session_id: str) -> bool:
        """Ask the relay to end a session. Returns False if the relay refused."""
        try:
            response = await self._request("POST", f"{API_PREFIX}/terminal/stop/{session_id}")
        except TransportConnectionError as e:
            logger.warning(f"Failed to stop session {session_id}: {e}")
            return False
        return response.status_code == 200

    async def heartbeat(self, session_id: str) -> HeartbeatResult:
        """Send one heartbeat and classify the answer."""
        try:
            response = await self._request("POST", f"{API_PREFIX}/sessions/{session_id}/heartbeat")
        except TransportConnectionError as e:
            logger.warning(f"Heartbeat request failed for {session_id}: {e}")
            return HeartbeatResult.FAILED

        if response.status_code == 200:
            return HeartbeatResult.OK
        if response.status_code == 404:
            return HeartbeatResult.NOT_FOUND
        if response.status_code in (401, 403):
            return HeartbeatResult.FORBIDDEN
        return HeartbeatResult.FAILED

    def heartbeat_url(self, session_id: str) -> str:
        """Absolute heartbeat URL with the token as a query parameter."""
        query = urlencode({"token": self.token})
        return f"{self.base_url}{API_PREFIX}/sessions/{session_id}/heartbeat?{query}"

    async def replay_info(self, session_id: str) -> Dict[str, Any]:
        """
        Fetch replay metadata for a session.

        Raises:
            RecordingAbsent: The session exists but has no recording
            RecordingLoadError: Session missing, forbidden, or request failed
        """
        try:
            response = await self._request("GET", f"{API_PREFIX}/sessions/{session_id}/replay-info")
        except TransportConnectionError as e:
            raise RecordingLoadError(str(e)) from e
        if response.status_code != 200:
            raise RecordingLoadError(
                f"replay info for {session_id} failed with HTTP {response.status_code}"
            )
        info = response.json()
        if not info.get("has_recording"):
            raise RecordingAbsent(f"session {session_id} has no recording")
        return info

    async def fetch_recording(self, session_id: str) -> str:
        """
        Download the raw recording log.

        Raises:
            RecordingLoadError: If the download fails
        """
        try:
            response = await self._request("GET", f"{API_PREFIX}/sessions/{session_id}/replay")
        except TransportConnectionError as e:
            raise RecordingLoadError(str(e)) from e
        if response.status_code != 200:
            raise RecordingLoadError(
                f"recording download for {session_id} failed with HTTP {response.status_code}"
            )
        return response.text

    async def _request(self, method: str, path: str) -> httpx.Response:
        try:
            return await self._client.request(method, path, headers=self.headers)
        except httpx.HTTPError as e:
            raise TransportConnectionError(f"{method} {path} failed: {e}") from e
