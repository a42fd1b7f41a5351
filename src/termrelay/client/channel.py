"""
Duplex message channels for the client transport.

The transport talks to a Channel; WebSocketChannel is the network
implementation. The access credential travels in the connection URI, never
as a frame.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Union
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from termrelay.errors import AuthExpired, TransportConnectionError

logger = logging.getLogger(__name__)


def build_terminal_url(base_url: str, session_id: str, token: str) -> str:
    """
    Websocket URL of a session with the token as a query parameter.

    ``base_url`` may be http(s) or ws(s); http schemes are mapped to ws.
    """
    parts = urlsplit(base_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    path = f"{parts.path}/api/v1/ws/terminal/{session_id}"
    return urlunsplit((scheme, parts.netloc, path, urlencode({"token": token}), ""))


def redact_url(url: str) -> str:
    """URL without its query string, for logging."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class Channel(ABC):
    """Message-framed duplex channel."""

    @abstractmethod
    async def open(self) -> None:
        """
        Perform the handshake.

        Raises:
            TransportConnectionError: On handshake or network failure
            AuthExpired: If the relay rejected the credential
        """

    @abstractmethod
    async def send(self, message: str) -> None:
        """
        Send one message.

        Raises:
            TransportConnectionError: If the channel is gone
        """

    @abstractmethod
    async def recv(self) -> Optional[Union[str, bytes]]:
        """Next message, or None once the channel has closed."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""


def _status_code(error: Exception) -> Optional[int]:
    response = getattr(error, "response", None)
    if response is not None:
        return getattr(response, "status_code", None)
    return getattr(error, "status_code", None)


class WebSocketChannel(Channel):
    """Channel over a websocket connection."""

    def __init__(self, url: str, open_timeout: float = 10.0):
        """
        Args:
            url: Full websocket URL including the token query parameter
            open_timeout: Seconds allowed for the handshake
        """
        self.url = url
        self.open_timeout = open_timeout
        self._ws: Optional[Any] = None

    async def open(self) -> None:
        logger.info(f"Connecting to {redact_url(self.url)}")
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(self.url, max_size=2**20, ping_interval=None),
                timeout=self.open_timeout,
            )
        except InvalidStatus as e:
            status = _status_code(e)
            if status in (401, 403):
                raise AuthExpired(f"relay rejected the credential (HTTP {status})", status) from e
            raise TransportConnectionError(f"handshake failed (HTTP {status})") from e
        except asyncio.TimeoutError as e:
            raise TransportConnectionError(
                f"handshake timed out after {self.open_timeout}s"
            ) from e
        except (OSError, WebSocketException) as e:
            raise TransportConnectionError(f"cannot connect: {e}") from e

    async def send(self, message: str) -> None:
        if self._ws is None:
            raise TransportConnectionError("channel is not open")
        try:
            await self._ws.send(message)
        except ConnectionClosed as e:
            raise TransportConnectionError(f"channel closed: {e}") from e

    async def recv(self) -> Optional[Union[str, bytes]]:
        if self._ws is None:
            return None
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            logger.debug(f"Websocket closed: {e}")
            return None

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.warning(f"Error closing websocket: {e}")
