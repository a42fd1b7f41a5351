"""
Target hosts and SSH shell access.

Targets come from static configuration. ``open_shell`` connects to a target
with asyncssh and starts an interactive shell with a PTY.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import asyncssh

from termrelay.config import TargetConfig, TransportConfig
from termrelay.errors import TargetForbidden, TargetNotFound, TransportConnectionError
from termrelay.protocol.frames import TerminalSize
from termrelay.server.auth import User

logger = logging.getLogger(__name__)


@dataclass
class ShellHandle:
    """Open SSH connection plus the shell process running on it."""

    connection: Any
    process: Any

    def close(self) -> None:
        self.process.close()
        self.connection.close()


class TargetDirectory:
    """Lookup of configured targets with per-user access checks."""

    def __init__(self, targets: List[TargetConfig]):
        self._targets: Dict[str, TargetConfig] = {t.id: t for t in targets}
        logger.info(f"Loaded {len(self._targets)} targets")

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._targets

    def lookup(self, target_id: str, user: User) -> TargetConfig:
        """
        Return the target if ``user`` may connect to it.

        Raises:
            TargetNotFound: No target with this id
            TargetForbidden: The user is not on the target's allow list
        """
        target = self._targets.get(target_id)
        if target is None:
            raise TargetNotFound(f"target {target_id} not found")
        if not user.is_admin and user.id not in target.allowed_user_ids:
            logger.warning(f"User {user.username} denied access to target {target_id}")
            raise TargetForbidden(f"user {user.username} may not use target {target_id}")
        return target


async def open_shell(
    target: TargetConfig, size: TerminalSize, config: TransportConfig
) -> ShellHandle:
    """
    Connect to ``target`` and start an interactive shell.

    The process is opened with ``encoding=None`` so output arrives as bytes.

    Raises:
        TransportConnectionError: If the SSH connection or shell cannot be opened
    """
    options: Dict[str, Any] = {
        "port": target.port,
        "username": target.username,
        "known_hosts": None,
        "connect_timeout": config.connect_timeout,
    }
    if target.key_path is not None:
        options["client_keys"] = [str(target.key_path)]
    if target.password is not None:
        options["password"] = target.password

    logger.info(f"Opening shell on {target.username}@{target.host}:{target.port}")
    try:
        connection = await asyncssh.connect(target.host, **options)
    except (OSError, asyncssh.Error) as e:
        raise TransportConnectionError(f"cannot connect to target {target.id}: {e}") from e

    try:
        process = await connection.create_process(
            term_type=config.term_type,
            term_size=(size.columns, size.rows),
            encoding=None,
        )
    except (OSError, asyncssh.Error) as e:
        connection.close()
        raise TransportConnectionError(f"cannot start shell on target {target.id}: {e}") from e

    return ShellHandle(connection=connection, process=process)
