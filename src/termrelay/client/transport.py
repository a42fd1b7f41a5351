"""
Client-side terminal session transport.

State machine::

    connecting -> connected -> closing -> closed
         |            |                     ^
         +-> error    +---------------------+

Inbound messages flow network reader -> queue -> dispatcher -> view, so the
view sees output in exactly the order the relay emitted it. Outbound input and
resize frames are sent immediately and only while connected.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Union

from termrelay.client.channel import Channel
from termrelay.client.heartbeat import SessionHeartbeat
from termrelay.errors import AuthExpired, MalformedFrame, TermRelayError, TransportConnectionError
from termrelay.protocol.frames import Frame, FrameKind, decode_inbound, encode_frame
from termrelay.sanitize import sanitize
from termrelay.view import TerminalView

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"
    ERROR = "error"


TERMINAL_STATES = frozenset({TransportState.CLOSED, TransportState.ERROR})

StateListener = Callable[[TransportState, Optional[Exception]], None]

# Queue marker for "channel ended".
_EOF = object()


class TerminalTransport:
    """
    Owns one live session's channel. A session has exactly one consumer.

    The listener is called once, with the terminal state and the error that
    caused it (None for an orderly close).
    """

    def __init__(
        self,
        channel: Channel,
        view: TerminalView,
        session_id: str = "",
        heartbeat: Optional[SessionHeartbeat] = None,
        listener: Optional[StateListener] = None,
    ):
        """
        Args:
            channel: Unopened channel; its URI carries the credential
            view: Receives sanitized output
            session_id: Used for logging
            heartbeat: Started on connect, stopped on teardown
            listener: Notified exactly once on reaching closed or error
        """
        self.channel = channel
        self.view = view
        self.session_id = session_id
        self.heartbeat = heartbeat
        self.listener = listener

        self.state = TransportState.CONNECTING
        self.close_reason: Optional[Exception] = None
        self.frames_sent = 0
        self.frames_received = 0

        self._inbound: "asyncio.Queue[Union[Frame, object]]" = asyncio.Queue()
        self._reader_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None
        self._closed_event = asyncio.Event()
        self._notified = False

        if self.heartbeat is not None and self.heartbeat.on_terminated is None:
            self.heartbeat.on_terminated = self._on_heartbeat_terminated

    @property
    def connected(self) -> bool:
        return self.state is TransportState.CONNECTED

    async def connect(self) -> None:
        """
        Open the channel and start exchanging frames.

        Raises:
            TransportConnectionError: Handshake or network failure (state -> error)
            AuthExpired: Credential rejected at handshake (state -> error)
        """
        if self.state is not TransportState.CONNECTING:
            raise TransportConnectionError(f"cannot connect from state {self.state.value}")
        try:
            await self.channel.open()
        except TermRelayError as e:
            logger.error(f"Connection failed for session {self.session_id}: {e}")
            await self._finish(TransportState.ERROR, e)
            raise

        self._set_state(TransportState.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        if self.heartbeat is not None:
            self.heartbeat.start()
        logger.info(f"Transport connected (session: {self.session_id})")

    async def send_input(self, text: str) -> bool:
        """Send keystrokes. Returns False without sending unless connected."""
        if not text:
            return False
        return await self._send(Frame.input(text))

    async def resize(self, columns: int, rows: int) -> bool:
        """Forward a new terminal size immediately. False unless connected."""
        try:
            frame = Frame.resize(columns, rows)
        except ValueError as e:
            logger.warning(f"Ignoring resize for session {self.session_id}: {e}")
            return False
        return await self._send(frame)

    async def close(self) -> None:
        """
        Client-initiated close: send a close frame, then close the channel.

        Always ends in ``closed``, even when the close frame cannot be sent.
        """
        if self.state in TERMINAL_STATES or self.state is TransportState.CLOSING:
            await self._closed_event.wait()
            return
        if self.state is TransportState.CONNECTED:
            self._set_state(TransportState.CLOSING)
            try:
                await self.channel.send(encode_frame(Frame.close()))
                self.frames_sent += 1
            except TermRelayError as e:
                logger.warning(f"Close frame not delivered (session: {self.session_id}): {e}")
        await self._finish(TransportState.CLOSED, None)

    async def wait_closed(self) -> Optional[Exception]:
        """Wait for a terminal state; returns the close reason."""
        await self._closed_event.wait()
        return self.close_reason

    async def on_visible(self) -> None:
        """The consuming view came back to the foreground."""
        if self.connected and self.heartbeat is not None:
            await self.heartbeat.on_visible()

    async def _send(self, frame: Frame) -> bool:
        if self.state is not TransportState.CONNECTED:
            logger.debug(
                f"Dropping {frame.kind.value} frame in state {self.state.value} "
                f"(session: {self.session_id})"
            )
            return False
        try:
            await self.channel.send(encode_frame(frame))
        except TransportConnectionError as e:
            logger.error(f"Send failed (session: {self.session_id}): {e}")
            await self._finish(TransportState.ERROR, e)
            return False
        self.frames_sent += 1
        return True

    async def _read_loop(self) -> None:
        """Network side: decode messages and queue them in arrival order."""
        try:
            while True:
                message = await self.channel.recv()
                if message is None:
                    break
                try:
                    frame = decode_inbound(message)
                except MalformedFrame as e:
                    logger.warning(f"Skipping malformed frame (session: {self.session_id}): {e}")
                    continue
                await self._inbound.put(frame)
                if frame.kind is FrameKind.CLOSE:
                    break
        except Exception as e:
            logger.error(f"Read loop failed (session: {self.session_id}): {e}", exc_info=True)
        finally:
            self._inbound.put_nowait(_EOF)

    async def _dispatch_loop(self) -> None:
        """Application side: apply frames to the view, then close on EOF."""
        while True:
            item = await self._inbound.get()
            if item is _EOF:
                break
            frame = item
            if frame.kind is FrameKind.CLOSE:
                logger.info(f"Relay closed the session (session: {self.session_id})")
                break
            if frame.is_output:
                self.frames_received += 1
                text = sanitize(frame.text, legacy_prefix=frame.raw)
                if text:
                    self.view.write(text)
            else:
                logger.debug(f"Ignoring inbound {frame.kind.value} frame")

        if self.state is TransportState.CONNECTED:
            await self._finish(TransportState.CLOSED, None)

    async def _on_heartbeat_terminated(self, error: AuthExpired) -> None:
        """The relay no longer knows this session: close without another frame."""
        if self.state in TERMINAL_STATES:
            return
        logger.warning(f"Session {self.session_id} ended by relay: {error}")
        await self._finish(TransportState.CLOSED, error)

    async def _finish(self, state: TransportState, error: Optional[Exception]) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.close_reason = error
        self._set_state(state)

        if self.heartbeat is not None:
            # A relay that already ended the session gets no further beat.
            if not isinstance(error, AuthExpired):
                self.heartbeat.send_final()
            await self.heartbeat.stop()
        await self.channel.close()

        current = asyncio.current_task()
        for task in (self._reader_task, self._dispatch_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._dispatch_task = None

        self._closed_event.set()
        self._notify(state, error)

    def _set_state(self, state: TransportState) -> None:
        logger.debug(f"Transport {self.session_id}: {self.state.value} -> {state.value}")
        self.state = state

    def _notify(self, state: TransportState, error: Optional[Exception]) -> None:
        if self._notified:
            return
        self._notified = True
        if error is not None:
            self.view.notice(f"Connection {state.value}: {error}")
        if self.listener is not None:
            try:
                self.listener(state, error)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)
