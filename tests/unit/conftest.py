"""
Shared fixtures and utilities for unit tests.

Provides in-memory channels, fake clocks and shell process mocks.
"""

import asyncio
from typing import List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

from termrelay.client.channel import Channel
from termrelay.errors import TransportConnectionError
from termrelay.view import BufferView


# ============================================================================
# Channel Fakes
# ============================================================================

class FakeChannel(Channel):
    """In-memory channel: tests push inbound messages and read what was sent."""

    def __init__(self, open_error: Optional[Exception] = None):
        self.open_error = open_error
        self.sent: List[str] = []
        self.opened = False
        self.closed = False
        self.fail_sends = False
        self._inbox: "asyncio.Queue[Optional[Union[str, bytes]]]" = asyncio.Queue()

    def push(self, message: Union[str, bytes]) -> None:
        self._inbox.put_nowait(message)

    def end(self) -> None:
        """Simulate the relay closing the connection."""
        self._inbox.put_nowait(None)

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def send(self, message: str) -> None:
        if self.closed or self.fail_sends:
            raise TransportConnectionError("channel closed")
        self.sent.append(message)

    async def recv(self) -> Optional[Union[str, bytes]]:
        if self.closed:
            return None
        return await self._inbox.get()

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def channel_factory():
    """FakeChannel class, for tests that need a failing handshake."""
    return FakeChannel


@pytest.fixture
def view() -> BufferView:
    return BufferView()


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)
    await asyncio.sleep(0.01)


@pytest.fixture
def settle():
    """Coroutine function that lets queued tasks run."""
    return _settle


# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Process Mock Fixtures
# ============================================================================

@pytest.fixture
def mock_process():
    """Mock asyncssh.SSHClientProcess opened with encoding=None."""
    process = MagicMock()
    process.stdin = MagicMock()
    process.stdin.write = MagicMock()
    process.stdin.drain = AsyncMock()
    process.stdout = MagicMock()
    process.stdout.read = AsyncMock(return_value=b"")
    process.change_terminal_size = MagicMock()
    process.close = MagicMock()
    return process


@pytest.fixture
def mock_recorder():
    """Mock SessionRecorder."""
    return MagicMock()
