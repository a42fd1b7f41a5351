"""
termrelay entry point.

Subcommands:
    serve   Run the relay server
    attach  Open a live terminal session through a relay
    replay  Play back a recorded session
"""

import argparse
import asyncio
import logging
import shutil
import signal
import sys
from pathlib import Path
from typing import Optional, TextIO, Tuple

import uvicorn

from termrelay import __version__
from termrelay.client.api import RelayApiClient
from termrelay.client.channel import WebSocketChannel, build_terminal_url
from termrelay.client.heartbeat import SessionHeartbeat
from termrelay.client.transport import TerminalTransport
from termrelay.config import Config
from termrelay.errors import TermRelayError
from termrelay.replay.engine import ReplayEngine, ReplayStatus
from termrelay.replay.player import ReplayPlayer
from termrelay.replay.source import FileRecordingSource, HttpRecordingSource, RecordingSource
from termrelay.view import StreamView

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_RECORDING = 2


def setup_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(stream or sys.stdout)],
    )


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="termrelay",
        description="termrelay - browser terminal relay with session replay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"termrelay {__version__}")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config/config.yaml"),
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override the configured logging level",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the relay server")

    attach = sub.add_parser("attach", help="Open a live terminal session")
    attach.add_argument("target", help="Target id to connect to")
    attach.add_argument("--url", required=True, help="Relay base URL (http:// or https://)")
    attach.add_argument("--token", required=True, help="Access token")

    replay = sub.add_parser("replay", help="Play back a recorded session")
    replay.add_argument(
        "recording", help="Path to a .cast file, or a session id when --url is given"
    )
    replay.add_argument("--url", help="Fetch the recording from this relay")
    replay.add_argument("--token", help="Access token for --url")
    replay.add_argument("--speed", type=float, default=None, help="Playback speed multiplier")
    replay.add_argument(
        "--at", type=float, default=None, help="Print the screen at this offset (seconds) and exit"
    )

    return parser.parse_args(argv)


def load_config(path: Path, required: bool) -> Config:
    """Load the config file; client commands fall back to defaults when it is absent."""
    if not required and not path.exists():
        return Config()
    return Config.from_file(path)


def run_server(config: Config) -> int:
    """Run the relay server until interrupted."""
    from termrelay.server.app import create_app

    logger = logging.getLogger(__name__)
    logger.info(f"Relay listening on {config.server.host}:{config.server.port}")
    logger.info(f"Targets: {len(config.targets)}, tokens: {len(config.authentication.tokens)}")
    logger.info(
        f"Recording {'enabled' if config.recording.enabled else 'disabled'} "
        f"({config.recording.output_dir})"
    )
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )
    return EXIT_OK


async def attach(config: Config, target_id: str, url: str, token: str) -> int:
    """
    Open a session and pipe stdin lines to it until EOF or the session ends.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    logger = logging.getLogger(__name__)
    loop = asyncio.get_running_loop()
    view = StreamView()

    async with RelayApiClient(url, token, timeout=config.transport.connect_timeout) as api:
        try:
            started = await api.start_terminal(target_id)
        except TermRelayError as e:
            logger.error(f"Cannot start session on {target_id}: {e}")
            return EXIT_FAILED

        channel = WebSocketChannel(
            build_terminal_url(url, started.session_id, token),
            open_timeout=config.transport.connect_timeout,
        )
        heartbeat = SessionHeartbeat(api, started.session_id, config.transport)
        transport = TerminalTransport(channel, view, started.session_id, heartbeat=heartbeat)

        try:
            await transport.connect()
        except TermRelayError as e:
            logger.error(f"Cannot connect to session {started.session_id}: {e}")
            await api.stop_terminal(started.session_id)
            return EXIT_FAILED

        def on_resize() -> None:
            size = shutil.get_terminal_size()
            asyncio.ensure_future(transport.resize(size.columns, size.lines))

        if hasattr(signal, "SIGWINCH"):
            loop.add_signal_handler(signal.SIGWINCH, on_resize)
        on_resize()

        lines: "asyncio.Queue[str]" = asyncio.Queue()
        loop.add_reader(sys.stdin.fileno(), lambda: lines.put_nowait(sys.stdin.readline()))

        async def pump_stdin() -> None:
            while transport.connected:
                line = await lines.get()
                if not line:
                    break
                await transport.send_input(line)

        stdin_task = asyncio.create_task(pump_stdin())
        closed_task = asyncio.create_task(transport.wait_closed())
        try:
            await asyncio.wait({stdin_task, closed_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            loop.remove_reader(sys.stdin.fileno())
            if hasattr(signal, "SIGWINCH"):
                loop.remove_signal_handler(signal.SIGWINCH)
            stdin_task.cancel()
            await transport.close()
            closed_task.cancel()
            await api.stop_terminal(started.session_id)

        if transport.close_reason is not None:
            logger.warning(f"Session ended: {transport.close_reason}")
            return EXIT_FAILED
        return EXIT_OK


def recording_source(args: argparse.Namespace) -> Tuple[RecordingSource, str, Optional[RelayApiClient]]:
    """Pick where the recording comes from: a relay or a local .cast file."""
    if args.url:
        api = RelayApiClient(args.url, args.token or "")
        return HttpRecordingSource(api), args.recording, api
    path = Path(args.recording)
    return FileRecordingSource(path.parent), path.stem, None


async def replay(config: Config, args: argparse.Namespace) -> int:
    """
    Load a recording and play it to stdout.

    Returns:
        0 on success, 2 when the session has no recording, 1 when loading failed
    """
    source, session_id, api = recording_source(args)
    engine = ReplayEngine()
    try:
        status = await engine.load_from(source, session_id)
    finally:
        if api is not None:
            await api.close()

    if status is ReplayStatus.NO_RECORDING:
        print(f"No recording available for session {session_id}", file=sys.stderr)
        return EXIT_NO_RECORDING
    if status is ReplayStatus.FAILED:
        print(f"Failed to load recording: {engine.error}", file=sys.stderr)
        return EXIT_FAILED

    if args.at is not None:
        sys.stdout.write(engine.render_at(args.at))
        sys.stdout.flush()
        return EXIT_OK

    player = ReplayPlayer(engine, StreamView(), config.replay)
    try:
        if args.speed is not None:
            player.set_speed(args.speed)
        player.play()
        await player.wait_finished()
    finally:
        await player.close()
    return EXIT_OK


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for termrelay.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    args = parse_args(argv)
    serving = args.command == "serve"

    try:
        config = load_config(args.config, required=serving)
    except (FileNotFoundError, ValueError) as e:
        setup_logging(args.log_level or "INFO", sys.stderr)
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return EXIT_FAILED

    # Client commands own stdout for terminal output.
    setup_logging(args.log_level or config.logging.level, None if serving else sys.stderr)
    logger = logging.getLogger(__name__)
    logger.debug(f"termrelay v{__version__}")

    try:
        if serving:
            return run_server(config)
        if args.command == "attach":
            return asyncio.run(attach(config, args.target, args.url, args.token))
        return asyncio.run(replay(config, args))
    except ValueError as e:
        logger.error(str(e))
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.info("Interrupted by user, shutting down...")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
