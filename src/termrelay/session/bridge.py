"""
Websocket to shell bridge for relay sessions.

Manages bidirectional streaming between a client websocket and an SSH shell
process on the target host.
"""

import asyncio
import codecs
import logging
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect

from termrelay.errors import MalformedFrame
from termrelay.protocol.frames import Frame, FrameKind, decode_frame, encode_frame
from termrelay.session.recorder import SessionRecorder

logger = logging.getLogger(__name__)

READ_SIZE = 4096


class ShellBridge:
    """
    Proxies frames between a websocket client and a remote shell process.

    Architecture:
    - Two concurrent tasks, one per direction
    - Resize frames are applied to the shell as soon as they arrive
    - Shell output is recorded before it is sent, in the order it was read
    - Either side ending shuts the bridge down
    """

    def __init__(
        self,
        websocket: WebSocket,
        process: Any,
        session_id: str,
        recorder: Optional[SessionRecorder] = None,
    ):
        """
        Args:
            websocket: Accepted client websocket
            process: asyncssh.SSHClientProcess opened with ``encoding=None``
            session_id: Unique session identifier for logging
            recorder: Optional SessionRecorder for asciicast v2 recording
        """
        self.websocket = websocket
        self.process = process
        self.session_id = session_id
        self.recorder = recorder

        self.client_to_shell_task: Optional[asyncio.Task] = None
        self.shell_to_client_task: Optional[asyncio.Task] = None

        self._running = False
        self._client_closed = False
        self._shutdown_event = asyncio.Event()
        # Shell output can split a multi-byte character across reads.
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the two streaming tasks."""
        self._running = True
        self.client_to_shell_task = asyncio.create_task(self._client_to_shell())
        self.shell_to_client_task = asyncio.create_task(self._shell_to_client())
        logger.info(f"Shell bridge started for session {self.session_id}")

    async def handle_frame(self, frame: Frame) -> bool:
        """
        Apply one client frame to the shell.

        Returns:
            False once the client asked to close
        """
        if frame.kind is FrameKind.INPUT:
            text = frame.text
            if self.recorder:
                self.recorder.record_input(text)
            self.process.stdin.write(text.encode("utf-8"))
            await self.process.stdin.drain()
        elif frame.kind is FrameKind.RESIZE:
            await self.handle_resize(frame.size.columns, frame.size.rows)
        elif frame.kind is FrameKind.CLOSE:
            logger.info(f"Client requested close (session: {self.session_id})")
            self._client_closed = True
            return False
        else:
            logger.debug(
                f"Ignoring {frame.kind.value} frame from client (session: {self.session_id})"
            )
        return True

    async def handle_resize(self, columns: int, rows: int) -> None:
        """Forward a terminal resize to the shell immediately."""
        logger.debug(f"Terminal resize to {columns}x{rows} (session: {self.session_id})")
        self.process.change_terminal_size(columns, rows)
        if self.recorder:
            self.recorder.record_resize(columns, rows)

    async def _client_to_shell(self) -> None:
        """Forward client frames to the shell until the client goes away."""
        logger.debug(f"Client→Shell task started (session: {self.session_id})")
        try:
            while self._running:
                message = await self.websocket.receive_text()
                try:
                    frame = decode_frame(message)
                except MalformedFrame as e:
                    logger.warning(f"Dropping malformed frame (session: {self.session_id}): {e}")
                    continue
                if not await self.handle_frame(frame):
                    break
        except WebSocketDisconnect:
            logger.info(f"Client disconnected (session: {self.session_id})")
            self._client_closed = True
        except (BrokenPipeError, ConnectionResetError):
            logger.info(f"Shell input closed (session: {self.session_id})")
        except Exception as e:
            logger.error(
                f"Error in Client→Shell forwarding (session: {self.session_id}): {e}",
                exc_info=True,
            )
        finally:
            self._shutdown_event.set()
            logger.debug(f"Client→Shell task ended (session: {self.session_id})")

    async def _shell_to_client(self) -> None:
        """Forward shell output to the client until the shell exits."""
        logger.debug(f"Shell→Client task started (session: {self.session_id})")
        try:
            while self._running:
                data = await self.process.stdout.read(READ_SIZE)
                if not data:
                    logger.info(f"Shell exited (session: {self.session_id})")
                    break
                await self._emit(self._decoder.decode(data))
            await self._emit(self._decoder.decode(b"", final=True))
        except WebSocketDisconnect:
            logger.info(f"Client disconnected (session: {self.session_id})")
            self._client_closed = True
        except Exception as e:
            logger.error(
                f"Error in Shell→Client forwarding (session: {self.session_id}): {e}",
                exc_info=True,
            )
        finally:
            self._shutdown_event.set()
            logger.debug(f"Shell→Client task ended (session: {self.session_id})")

    async def _emit(self, text: str) -> None:
        if not text:
            return
        if self.recorder:
            self.recorder.record_output(text)
        await self.websocket.send_text(encode_frame(Frame.output(text)))

    async def wait_completion(self) -> None:
        """Return when either direction has ended."""
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """
        Stop the bridge and clean up.

        Cancels both tasks, tells a still-connected client that the session
        ended, and closes the shell process.
        """
        if not self._running:
            return

        logger.info(f"Stopping shell bridge (session: {self.session_id})")
        self._running = False
        self._shutdown_event.set()

        for task in (self.client_to_shell_task, self.shell_to_client_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if not self._client_closed:
            try:
                await self.websocket.send_text(encode_frame(Frame.close()))
            except Exception as e:
                logger.debug(f"Close frame not delivered (session: {self.session_id}): {e}")

        try:
            self.process.close()
        except Exception as e:
            logger.warning(f"Error closing shell process (session: {self.session_id}): {e}")

        logger.info(f"Shell bridge stopped (session: {self.session_id})")
