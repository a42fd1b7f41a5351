"""
Wire frames for the live terminal transport.

Frames travel as JSON objects of the form ``{"type": ..., "data": ...}``.
``data`` is a string for input/output frames and ``{"columns", "rows"}`` for
resize frames. Messages that are not JSON are treated as raw output from
older relays.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from termrelay.errors import MalformedFrame


class FrameKind(str, Enum):
    """Frame type tag as it appears on the wire."""

    INPUT = "input"
    OUTPUT = "output"
    RESIZE = "resize"
    CLOSE = "close"
    STDOUT = "stdout"
    STDERR = "stderr"


OUTPUT_KINDS = frozenset({FrameKind.OUTPUT, FrameKind.STDOUT, FrameKind.STDERR})


@dataclass(frozen=True)
class TerminalSize:
    """Terminal dimensions in character cells."""

    columns: int
    rows: int

    def __post_init__(self) -> None:
        if self.columns < 1 or self.rows < 1:
            raise ValueError(f"invalid terminal size {self.columns}x{self.rows}")


@dataclass(frozen=True)
class Frame:
    """A single transport message."""

    kind: FrameKind
    data: Union[str, TerminalSize] = ""
    # True when the frame was built from a non-JSON passthrough message.
    raw: bool = field(default=False, compare=False)

    @property
    def is_output(self) -> bool:
        return self.kind in OUTPUT_KINDS

    @property
    def text(self) -> str:
        if isinstance(self.data, TerminalSize):
            raise TypeError(f"{self.kind.value} frame carries a size, not text")
        return self.data

    @property
    def size(self) -> TerminalSize:
        if not isinstance(self.data, TerminalSize):
            raise TypeError(f"{self.kind.value} frame carries text, not a size")
        return self.data

    @classmethod
    def input(cls, text: str) -> "Frame":
        return cls(FrameKind.INPUT, text)

    @classmethod
    def output(cls, text: str) -> "Frame":
        return cls(FrameKind.OUTPUT, text)

    @classmethod
    def resize(cls, columns: int, rows: int) -> "Frame":
        return cls(FrameKind.RESIZE, TerminalSize(columns, rows))

    @classmethod
    def close(cls) -> "Frame":
        return cls(FrameKind.CLOSE, "")


def encode_frame(frame: Frame) -> str:
    """Serialize a frame to its JSON wire form."""
    if frame.kind is FrameKind.RESIZE:
        size = frame.size
        data: object = {"columns": size.columns, "rows": size.rows}
    else:
        data = frame.text
    return json.dumps({"type": frame.kind.value, "data": data}, separators=(",", ":"))


def _decode_size(data: object) -> TerminalSize:
    if not isinstance(data, dict):
        raise MalformedFrame("resize frame data must be an object")
    columns = data.get("columns", data.get("cols"))
    rows = data.get("rows")
    if (
        isinstance(columns, bool)
        or isinstance(rows, bool)
        or not isinstance(columns, int)
        or not isinstance(rows, int)
    ):
        raise MalformedFrame(f"resize frame needs integer columns and rows: {data!r}")
    try:
        return TerminalSize(columns, rows)
    except ValueError as e:
        raise MalformedFrame(str(e)) from e


def decode_frame(message: Union[str, bytes]) -> Frame:
    """
    Decode a JSON wire message into a frame.

    Raises:
        MalformedFrame: If the message is not JSON or not a valid frame
    """
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")

    try:
        obj = json.loads(message)
    except json.JSONDecodeError as e:
        raise MalformedFrame(f"not JSON: {e}") from e
    return _frame_from_object(obj)


def _frame_from_object(obj: object) -> Frame:
    if not isinstance(obj, dict) or "type" not in obj:
        raise MalformedFrame("frame must be an object with a 'type'")

    try:
        kind = FrameKind(obj["type"])
    except ValueError as e:
        raise MalformedFrame(f"unknown frame type {obj['type']!r}") from e

    data = obj.get("data", "")
    if kind is FrameKind.RESIZE:
        return Frame(kind, _decode_size(data))
    if data is None:
        data = ""
    if not isinstance(data, str):
        raise MalformedFrame(f"{kind.value} frame data must be a string")
    return Frame(kind, data)


def decode_inbound(message: Union[str, bytes]) -> Frame:
    """
    Decode a message received from the relay.

    Messages that are not JSON objects become raw output frames. JSON
    objects with a bad shape still raise MalformedFrame so the caller can
    skip them.
    """
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    try:
        obj = json.loads(message)
    except json.JSONDecodeError:
        return Frame(FrameKind.OUTPUT, message, raw=True)
    if not isinstance(obj, dict):
        return Frame(FrameKind.OUTPUT, message, raw=True)
    return _frame_from_object(obj)
