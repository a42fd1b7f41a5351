"""
Terminal view adapters.

A view is the boundary where sanitized text and escape sequences leave the
core. Live sessions append chunks with write(); replay replaces the whole
buffer with render().
"""

import sys
from abc import ABC, abstractmethod
from typing import List, Optional, TextIO

# Clear screen and move the cursor home.
CLEAR_SCREEN = "\x1b[2J\x1b[H"


class TerminalView(ABC):
    """Receives correctly ordered terminal text."""

    @abstractmethod
    def write(self, text: str) -> None:
        """Append a chunk of live output."""

    @abstractmethod
    def render(self, buffer: str) -> None:
        """Replace the displayed content with a cumulative replay buffer."""

    def notice(self, message: str) -> None:
        """Show a status line outside the terminal stream."""


class StreamView(TerminalView):
    """Writes to a text stream that is itself a terminal (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._rendered = ""

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def render(self, buffer: str) -> None:
        if buffer.startswith(self._rendered):
            # Time moved forward: only the new tail needs drawing.
            self.stream.write(buffer[len(self._rendered):])
        else:
            self.stream.write(CLEAR_SCREEN + buffer)
        self.stream.flush()
        self._rendered = buffer

    def notice(self, message: str) -> None:
        self.stream.write(f"\r\n\x1b[33m{message}\x1b[0m\r\n")
        self.stream.flush()


class BufferView(TerminalView):
    """Keeps everything in memory."""

    def __init__(self):
        self.chunks: List[str] = []
        self.buffer = ""
        self.renders = 0
        self.notices: List[str] = []

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def write(self, text: str) -> None:
        self.chunks.append(text)

    def render(self, buffer: str) -> None:
        self.buffer = buffer
        self.renders += 1

    def notice(self, message: str) -> None:
        self.notices.append(message)
