"""
FastAPI application for the relay server.

Starts terminal sessions, bridges their websocket to an SSH shell, answers
heartbeats and serves recordings for replay.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    Header,
    HTTPException,
    Query,
    Request,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.responses import FileResponse

from termrelay import __version__
from termrelay.config import Config, TargetConfig, TransportConfig
from termrelay.errors import TargetForbidden, TargetNotFound, TransportConnectionError
from termrelay.protocol.frames import TerminalSize
from termrelay.server.auth import TokenAuthenticator, User
from termrelay.server.targets import ShellHandle, TargetDirectory, open_shell
from termrelay.session.bridge import ShellBridge
from termrelay.session.models import Session, SessionRegistry, SessionState
from termrelay.session.monitor import SessionMonitor
from termrelay.session.recorder import SessionRecorder

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Websocket close codes.
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404
CLOSE_ALREADY_ATTACHED = 4409
CLOSE_SHELL_FAILED = 1011

ShellOpener = Callable[[TargetConfig, TerminalSize, TransportConfig], Awaitable[ShellHandle]]


@dataclass
class RelayContext:
    """Everything the route handlers share, kept on ``app.state.relay``."""

    config: Config
    registry: SessionRegistry
    authenticator: TokenAuthenticator
    targets: TargetDirectory
    monitor: SessionMonitor
    shell_opener: ShellOpener
    bridges: Dict[str, ShellBridge] = field(default_factory=dict)
    attached: Set[str] = field(default_factory=set)

    def recording_path(self, session_id: str) -> Path:
        return Path(self.config.recording.output_dir) / f"{session_id}.cast"

    async def terminate(self, session_id: str) -> None:
        """Stop the live bridge of a session, if there is one."""
        bridge = self.bridges.get(session_id)
        if bridge is not None:
            await bridge.stop()


router = APIRouter(prefix=API_PREFIX)


def _context(request: Request) -> RelayContext:
    return request.app.state.relay


def current_user(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
) -> User:
    """Bearer header first, then the ``token`` query parameter (beacon delivery)."""
    ctx = _context(request)
    user = ctx.authenticator.authenticate(
        TokenAuthenticator.token_from_header(authorization) or token
    )
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def _owned_session(ctx: RelayContext, session_id: str, user: User) -> Session:
    session = ctx.registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if not user.is_admin and session.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return session


def _session_dict(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "user_id": session.user_id,
        "target_id": session.target_id,
        "state": session.state.value,
        "start_time": session.start_time,
        "end_time": session.end_time,
        "last_heartbeat": session.last_heartbeat,
    }


def _websocket_base(ctx: RelayContext, request: Request) -> str:
    if ctx.config.server.public_url:
        return ctx.config.server.public_url.rstrip("/")
    base = str(request.base_url).rstrip("/")
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):]
    if base.startswith("http://"):
        return "ws://" + base[len("http://"):]
    return base


# ------------------------------------------------------------------
# Terminal lifecycle
# ------------------------------------------------------------------


@router.post("/terminal/start/{target_id}")
async def start_terminal(
    request: Request, target_id: str, user: User = Depends(current_user)
) -> Dict[str, Any]:
    """Create a pending session against a target."""
    ctx = _context(request)
    try:
        ctx.targets.lookup(target_id, user)
    except TargetNotFound:
        raise HTTPException(status_code=404, detail="Target not found")
    except TargetForbidden:
        raise HTTPException(status_code=403, detail="Access denied")

    session = ctx.registry.create(user.id, target_id)
    url = f"{_websocket_base(ctx, request)}{API_PREFIX}/ws/terminal/{session.id}"
    return {"session_id": session.id, "url": url}


@router.post("/terminal/stop/{session_id}")
async def stop_terminal(
    request: Request, session_id: str, user: User = Depends(current_user)
) -> Dict[str, Any]:
    """End a session and its shell."""
    ctx = _context(request)
    _owned_session(ctx, session_id, user)
    await ctx.terminate(session_id)
    session = ctx.registry.close(session_id)
    return {"session_id": session_id, "state": session.state.value}


@router.post("/sessions/{session_id}/heartbeat")
async def heartbeat(
    request: Request, session_id: str, user: User = Depends(current_user)
) -> Dict[str, Any]:
    """Keep a session alive. Ended sessions answer 404."""
    ctx = _context(request)
    session = _owned_session(ctx, session_id, user)
    if session.is_final:
        raise HTTPException(status_code=404, detail="Session ended")
    ctx.registry.touch(session_id)
    return {"status": "ok"}


# ------------------------------------------------------------------
# Session listing
# ------------------------------------------------------------------


def _visible_sessions(
    ctx: RelayContext, user: User, state: Optional[SessionState] = None
) -> List[Session]:
    """Everything for admins, the caller's own sessions otherwise."""
    return ctx.registry.list(user_id=None if user.is_admin else user.id, state=state)


@router.get("/sessions")
async def list_sessions(
    request: Request,
    user: User = Depends(current_user),
    limit: int = Query(default=20, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> Dict[str, Any]:
    """Known sessions, newest first."""
    sessions = _visible_sessions(_context(request), user)[::-1]
    page = sessions[offset:offset + limit]
    return {"sessions": [_session_dict(s) for s in page], "total": len(sessions)}


@router.get("/sessions/active")
async def active_sessions(request: Request, user: User = Depends(current_user)) -> Dict[str, Any]:
    active = _visible_sessions(_context(request), user, SessionState.ACTIVE)
    return {"active_sessions": len(active)}


@router.get("/sessions/{session_id}")
async def get_session(
    request: Request, session_id: str, user: User = Depends(current_user)
) -> Dict[str, Any]:
    return _session_dict(_owned_session(_context(request), session_id, user))


@router.get("/terminal/sessions")
async def live_terminals(request: Request, user: User = Depends(current_user)) -> Dict[str, Any]:
    """Sessions with a shell bridged on this relay right now."""
    ctx = _context(request)
    live = [
        s for s in _visible_sessions(ctx, user, SessionState.ACTIVE) if s.id in ctx.bridges
    ]
    return {"sessions": [_session_dict(s) for s in live], "total": len(live)}


# ------------------------------------------------------------------
# Replay
# ------------------------------------------------------------------


def _recording_for(ctx: RelayContext, session_id: str, user: User) -> Dict[str, Any]:
    session = ctx.registry.get(session_id)
    if session is None:
        # Recordings outlive the in-memory registry; only admins may browse those.
        path = ctx.recording_path(session_id)
        if not user.is_admin or not path.exists():
            raise HTTPException(status_code=404, detail="Session not found")
        summary: Dict[str, Any] = {"id": session_id}
    else:
        session = _owned_session(ctx, session_id, user)
        path = session.recording_path or ctx.recording_path(session_id)
        summary = _session_dict(session)

    size = path.stat().st_size if path.is_file() else 0
    return {"session": summary, "has_recording": size > 0, "recording_size": size, "path": path}


@router.get("/sessions/{session_id}/replay-info")
async def replay_info(
    request: Request, session_id: str, user: User = Depends(current_user)
) -> Dict[str, Any]:
    """Whether a recording exists and how big it is."""
    info = _recording_for(_context(request), session_id, user)
    info.pop("path")
    return info


@router.get("/sessions/{session_id}/replay")
async def replay(request: Request, session_id: str, user: User = Depends(current_user)):
    """Raw asciicast v2 log of a session."""
    info = _recording_for(_context(request), session_id, user)
    if not info["has_recording"]:
        raise HTTPException(status_code=404, detail="Recording not found")
    return FileResponse(info["path"], media_type="application/x-asciicast")


# ------------------------------------------------------------------
# Live terminal websocket
# ------------------------------------------------------------------


async def _safe_close(websocket: WebSocket, code: int = 1000) -> None:
    try:
        await websocket.close(code=code)
    except (RuntimeError, WebSocketDisconnect):
        # Already closed, or the client went away first.
        pass


@router.websocket("/ws/terminal/{session_id}")
async def terminal_websocket(
    websocket: WebSocket,
    session_id: str,
    token: Optional[str] = None,
    columns: Optional[int] = None,
    rows: Optional[int] = None,
) -> None:
    """Bridge one client to the session's shell. One consumer per session."""
    ctx: RelayContext = websocket.app.state.relay

    user = ctx.authenticator.authenticate(token)
    if user is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    session = ctx.registry.get(session_id)
    if session is None or session.is_final:
        await websocket.close(code=CLOSE_NOT_FOUND)
        return
    if not user.is_admin and session.user_id != user.id:
        await websocket.close(code=CLOSE_FORBIDDEN)
        return
    if session_id in ctx.attached:
        logger.warning(f"Refusing second attach to session {session_id}")
        await websocket.accept()
        await websocket.close(code=CLOSE_ALREADY_ATTACHED)
        return
    ctx.attached.add(session_id)

    transport = ctx.config.transport
    try:
        size = TerminalSize(columns or transport.default_columns, rows or transport.default_rows)
    except ValueError:
        size = TerminalSize(transport.default_columns, transport.default_rows)

    handle: Optional[ShellHandle] = None
    recorder: Optional[SessionRecorder] = None
    bridge: Optional[ShellBridge] = None
    # The claim, the shell and the session state are all released in finally.
    try:
        try:
            target = ctx.targets.lookup(session.target_id, user)
            handle = await ctx.shell_opener(target, size, transport)
        except (TargetNotFound, TargetForbidden, TransportConnectionError) as e:
            logger.error(f"Cannot open shell for session {session_id}: {e}")
            ctx.registry.close(session_id, error=True)
            await websocket.accept()
            await _safe_close(websocket, CLOSE_SHELL_FAILED)
            return

        await websocket.accept()
        ctx.registry.activate(session_id)

        recorder = SessionRecorder(
            ctx.config.recording,
            session_id,
            width=size.columns,
            height=size.rows,
            title=f"{target.username}@{target.host}",
            command=target.name or target.id,
            metadata={
                "session_id": session_id,
                "user_id": user.id,
                "username": user.username,
                "target_id": target.id,
                "TERM": transport.term_type,
            },
        )
        recorder.start()

        bridge = ShellBridge(websocket, handle.process, session_id, recorder=recorder)
        ctx.bridges[session_id] = bridge
        await bridge.start()
        await bridge.wait_completion()
    except WebSocketDisconnect:
        logger.info(f"Client left session {session_id} before it started")
    except asyncio.CancelledError:
        logger.info(f"Session {session_id} cancelled")
        raise
    finally:
        if bridge is not None:
            await bridge.stop()
        ctx.bridges.pop(session_id, None)
        ctx.attached.discard(session_id)
        if handle is not None:
            handle.close()
        if recorder is not None:
            recorder.stop()
            recorder.write_metadata()
        ctx.registry.close(session_id)
        await _safe_close(websocket)
        logger.info(f"Session {session_id} cleanup complete")


# ------------------------------------------------------------------
# Application factory
# ------------------------------------------------------------------


def create_app(
    config: Config,
    registry: Optional[SessionRegistry] = None,
    shell_opener: Optional[ShellOpener] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        config: Relay configuration
        registry: Session table (a fresh one by default)
        shell_opener: Coroutine opening a shell on a target; ``open_shell`` by default
    """
    if registry is None:
        registry = SessionRegistry()
    ctx = RelayContext(
        config=config,
        registry=registry,
        authenticator=TokenAuthenticator(config.authentication),
        targets=TargetDirectory(config.targets),
        monitor=SessionMonitor(registry, config.monitor),
        shell_opener=shell_opener or open_shell,
    )
    ctx.monitor.on_terminate = ctx.terminate

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx.monitor.start()
        try:
            yield
        finally:
            await ctx.monitor.stop()
            for session_id in list(ctx.bridges):
                await ctx.terminate(session_id)

    app = FastAPI(title="termrelay", version=__version__, lifespan=lifespan)
    app.state.relay = ctx
    app.include_router(router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "sessions": len(ctx.registry),
            "live": len(ctx.bridges),
            "monitor": ctx.monitor.status(),
        }

    return app
