"""
Where recordings come from.

A source returns the raw log text for a session, raises RecordingAbsent when
the session simply has none, and RecordingLoadError when fetching failed.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from termrelay.client.api import RelayApiClient
from termrelay.errors import RecordingAbsent, RecordingLoadError

logger = logging.getLogger(__name__)


class RecordingSource(ABC):
    """Fetches raw recording logs by session id."""

    @abstractmethod
    async def fetch(self, session_id: str) -> str:
        """
        Return the raw log.

        Raises:
            RecordingAbsent: The session has no recording
            RecordingLoadError: The recording could not be fetched
        """


class FileRecordingSource(RecordingSource):
    """Reads ``<session_id>.cast`` files from a directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    async def fetch(self, session_id: str) -> str:
        path = self.directory / f"{session_id}.cast"
        if not path.is_file():
            raise RecordingAbsent(f"no recording file {path}")
        try:
            if path.stat().st_size == 0:
                # The relay reports an empty file as no recording too.
                raise RecordingAbsent(f"recording file {path} is empty")
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise RecordingLoadError(f"cannot read {path}: {e}") from e


class HttpRecordingSource(RecordingSource):
    """Fetches recordings from the relay's replay endpoints."""

    def __init__(self, api: RelayApiClient):
        self.api = api

    async def fetch(self, session_id: str) -> str:
        info = await self.api.replay_info(session_id)
        logger.debug(
            f"Fetching recording for {session_id} ({info.get('recording_size', 0)} bytes)"
        )
        return await self.api.fetch_recording(session_id)
