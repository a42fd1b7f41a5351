"""
Parsing of asciicast v2 recordings.

Line 1 is a JSON header object; every following line is a
``[relative_time, type_code, payload]`` triple. Event lines are decoded
independently: a bad line is skipped with a warning and the rest of the
recording stays usable.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from termrelay.errors import MalformedLogLine, RecordingLoadError
from termrelay.protocol.frames import TerminalSize

logger = logging.getLogger(__name__)

EVENT_OUTPUT = "o"
EVENT_INPUT = "i"
EVENT_RESIZE = "r"


@dataclass(frozen=True)
class RecordingHeader:
    """Header record. Parsed for information, not validated against events."""

    version: int = 2
    width: int = 80
    height: int = 24
    timestamp: Optional[int] = None
    title: Optional[str] = None
    command: Optional[str] = None
    env: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordingHeader":
        env = data.get("env")
        return cls(
            version=int(data.get("version", 2)),
            width=int(data.get("width", 80)),
            height=int(data.get("height", 24)),
            timestamp=data.get("timestamp"),
            title=data.get("title"),
            command=data.get("command"),
            env=env if isinstance(env, dict) else {},
        )


@dataclass(frozen=True)
class RecordedEvent:
    """One timestamped entry of a recording."""

    time: float
    kind: str
    data: str

    @property
    def is_output(self) -> bool:
        return self.kind == EVENT_OUTPUT

    def resize_size(self) -> Optional[TerminalSize]:
        """Size carried by a resize event ("120x40"), or None."""
        if self.kind != EVENT_RESIZE:
            return None
        width, sep, height = self.data.partition("x")
        if not sep:
            return None
        try:
            return TerminalSize(int(width), int(height))
        except ValueError:
            return None


@dataclass(frozen=True)
class Recording:
    """A parsed recording: header plus events in stored order."""

    header: RecordingHeader
    events: Tuple[RecordedEvent, ...]
    skipped_lines: int = 0

    @property
    def duration(self) -> float:
        """Relative time of the last event, 0 when there are none."""
        return self.events[-1].time if self.events else 0.0

    @property
    def output_events(self) -> List[RecordedEvent]:
        return [event for event in self.events if event.is_output]


def parse_header(line: str) -> RecordingHeader:
    """
    Decode the header line.

    Raises:
        RecordingLoadError: If the line is not a JSON object
    """
    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        raise RecordingLoadError(f"invalid recording header: {e}") from e
    if not isinstance(data, dict):
        raise RecordingLoadError("recording header must be a JSON object")
    try:
        return RecordingHeader.from_dict(data)
    except (TypeError, ValueError) as e:
        raise RecordingLoadError(f"invalid recording header: {e}") from e


def parse_event(line: str, line_number: int) -> RecordedEvent:
    """
    Decode one event line.

    Raises:
        MalformedLogLine: If the line is not a valid event triple
    """
    try:
        item = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedLogLine(line_number, f"not JSON ({e})") from e

    if not isinstance(item, list) or len(item) < 3:
        raise MalformedLogLine(line_number, "expected [time, type, data]")

    time_value, kind, data = item[0], item[1], item[2]
    if isinstance(time_value, bool) or not isinstance(time_value, (int, float)):
        raise MalformedLogLine(line_number, f"time is not a number: {time_value!r}")
    if time_value < 0:
        raise MalformedLogLine(line_number, f"negative time {time_value}")
    if not isinstance(kind, str) or not kind:
        raise MalformedLogLine(line_number, f"invalid event type {kind!r}")
    if not isinstance(data, str):
        raise MalformedLogLine(line_number, "event data is not a string")

    return RecordedEvent(time=float(time_value), kind=kind, data=data)


def load(text: str) -> Recording:
    """
    Parse a complete recording.

    Args:
        text: Raw newline-delimited JSON log

    Returns:
        Recording with the header and every decodable event in stored order

    Raises:
        RecordingLoadError: If the log is empty or the header is unreadable
    """
    lines = text.strip().splitlines()
    if not lines:
        raise RecordingLoadError("recording is empty")

    header = parse_header(lines[0])
    events: List[RecordedEvent] = []
    skipped = 0
    last_time = 0.0

    for line_number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        try:
            event = parse_event(line, line_number)
        except MalformedLogLine as e:
            skipped += 1
            logger.warning(f"Skipping malformed recording line: {e}")
            continue
        if event.time < last_time:
            logger.warning(
                f"Recording line {line_number} goes back in time "
                f"({event.time:.6f} < {last_time:.6f})"
            )
        last_time = max(last_time, event.time)
        events.append(event)

    logger.debug(f"Loaded recording: {len(events)} events, {skipped} skipped lines")
    return Recording(header=header, events=tuple(events), skipped_lines=skipped)
