"""
Replay engine: cumulative terminal output at an arbitrary time offset.

The rendered buffer at time T is the ordered concatenation of sanitized output
payloads whose relative time is <= T. It is recomputed from time 0 on every
call, since escape sequences are stateful and cannot be cut mid-stream.
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple

from termrelay.errors import RecordingAbsent, RecordingLoadError
from termrelay.replay import recording as recording_format
from termrelay.replay.recording import Recording, RecordingHeader
from termrelay.replay.source import RecordingSource
from termrelay.sanitize import sanitize

logger = logging.getLogger(__name__)


class ReplayStatus(str, Enum):
    """Load outcome. NO_RECORDING and FAILED are never conflated."""

    EMPTY = "empty"
    READY = "ready"
    NO_RECORDING = "no_recording"
    FAILED = "failed"


class ReplayEngine:
    """Holds one loaded recording and renders it at any virtual time."""

    def __init__(self, recording: Optional[Recording] = None):
        self.status = ReplayStatus.EMPTY
        self.error: Optional[Exception] = None
        self._recording: Optional[Recording] = None
        self._output: List[Tuple[float, str]] = []
        if recording is not None:
            self._set_recording(recording)

    @property
    def recording(self) -> Optional[Recording]:
        return self._recording

    @property
    def header(self) -> Optional[RecordingHeader]:
        return self._recording.header if self._recording else None

    @property
    def has_recording(self) -> bool:
        return self.status is ReplayStatus.READY

    @property
    def duration(self) -> float:
        return self._recording.duration if self._recording else 0.0

    def load(self, text: str) -> Recording:
        """
        Parse a raw log and make it the current recording.

        Raises:
            RecordingLoadError: If the header cannot be read
        """
        try:
            parsed = recording_format.load(text)
        except RecordingLoadError as e:
            self._fail(e)
            raise
        self._set_recording(parsed)
        return parsed

    async def load_from(self, source: RecordingSource, session_id: str) -> ReplayStatus:
        """
        Fetch and load a session's recording.

        Fetch or parse failures are reported through ``status``/``error``; no
        partial render is attempted.
        """
        self._recording = None
        self._output = []
        try:
            text = await source.fetch(session_id)
        except RecordingAbsent:
            logger.info(f"No recording for session {session_id}")
            self.status = ReplayStatus.NO_RECORDING
            self.error = None
            return self.status
        except Exception as e:
            logger.error(f"Failed to fetch recording for {session_id}: {e}")
            self._fail(e)
            return self.status

        try:
            self.load(text)
        except RecordingLoadError as e:
            logger.error(f"Failed to load recording for {session_id}: {e}")
        return self.status

    def render_at(self, time: float) -> str:
        """Sanitized cumulative output of every output event at or before ``time``."""
        return "".join(data for event_time, data in self._output if event_time <= time)

    def events_until(self, time: float) -> int:
        """Number of output events visible at ``time``."""
        return sum(1 for event_time, _ in self._output if event_time <= time)

    def _set_recording(self, parsed: Recording) -> None:
        self._recording = parsed
        self._output = [
            (event.time, sanitize(event.data)) for event in parsed.events if event.is_output
        ]
        self.error = None
        self.status = ReplayStatus.READY if parsed.events else ReplayStatus.NO_RECORDING

    def _fail(self, error: Exception) -> None:
        self._recording = None
        self._output = []
        self.error = error
        self.status = ReplayStatus.FAILED
