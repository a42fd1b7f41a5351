"""Session recording in asciicast v2 format."""

import json
import logging
import time
from pathlib import Path
from typing import Optional

from termrelay.config import RecordingConfig
from termrelay.replay.recording import EVENT_INPUT, EVENT_OUTPUT, EVENT_RESIZE
from termrelay.sanitize import protect_legacy_prefix, sanitize

logger = logging.getLogger(__name__)


class SessionRecorder:
    """
    Records terminal session I/O to asciicast v2 .cast files.

    Each event is appended and flushed as it happens. All public methods catch
    exceptions internally: a failed write is logged and dropped, never retried,
    and never reaches the caller.
    """

    def __init__(
        self,
        config: RecordingConfig,
        session_id: str,
        width: int = 80,
        height: int = 24,
        title: Optional[str] = None,
        command: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        self._config = config
        self._session_id = session_id
        self._width = width
        self._height = height
        self._title = title
        self._command = command
        self._metadata = metadata or {}
        self._file = None
        self._start_time: float = 0.0
        self._event_count: int = 0

    @property
    def active(self) -> bool:
        """True when the recording file is open and accepting events."""
        return self._file is not None

    @property
    def path(self) -> Path:
        return Path(self._config.output_dir) / f"{self._session_id}.cast"

    @property
    def event_count(self) -> int:
        return self._event_count

    def start(self) -> None:
        """Open the .cast file and write the header. No-op if disabled."""
        if not self._config.enabled:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "w", encoding="utf-8")
            self._start_time = time.monotonic()
            header = {
                "version": 2,
                "width": self._width,
                "height": self._height,
                "timestamp": int(time.time()),
            }
            if self._title:
                header["title"] = self._title
            if self._command:
                header["command"] = self._command
            if self._metadata:
                header["env"] = self._metadata
            self._file.write(json.dumps(header, separators=(",", ":")) + "\n")
            self._file.flush()
            logger.info("Recording started: %s", self.path)
        except Exception:
            logger.exception("Failed to start recording for %s", self._session_id)
            self._file = None

    def record_output(self, text: str) -> None:
        """Record output (shell -> client), sanitized as the live view shows it."""
        cleaned = sanitize(text, legacy_prefix=False)
        if cleaned:
            self._record_event(EVENT_OUTPUT, protect_legacy_prefix(cleaned))

    def record_input(self, text: str) -> None:
        """Record input (client -> shell)."""
        if text:
            self._record_event(EVENT_INPUT, text)

    def record_resize(self, width: int, height: int) -> None:
        """Record terminal resize event."""
        self._record_event(EVENT_RESIZE, f"{width}x{height}")

    def stop(self) -> None:
        """Close recording file. Safe to call multiple times."""
        if self._file:
            try:
                self._file.close()
                logger.info(
                    "Recording stopped for %s: %d events",
                    self._session_id,
                    self._event_count,
                )
            except Exception:
                logger.warning(
                    "Error closing recording for %s", self._session_id, exc_info=True
                )
            finally:
                self._file = None

    def write_metadata(self) -> None:
        """Write JSON metadata sidecar file."""
        if not self._config.enabled:
            return
        try:
            path = Path(self._config.output_dir) / f"{self._session_id}.json"
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self._metadata, f, indent=2, default=str)
        except Exception:
            logger.warning(
                "Failed to write metadata for %s", self._session_id, exc_info=True
            )

    def _record_event(self, event_type: str, data: str) -> None:
        """Append a single event line to the .cast file."""
        if not self._file:
            return
        try:
            elapsed = time.monotonic() - self._start_time
            line = json.dumps([round(elapsed, 6), event_type, data], separators=(",", ":"))
            self._file.write(line + "\n")
            self._file.flush()
            self._event_count += 1
        except Exception:
            logger.warning(
                "Failed to record %s event for %s",
                event_type,
                self._session_id,
                exc_info=True,
            )
