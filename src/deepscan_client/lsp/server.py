"""DeepScan server launch options.

This module describes how the server process is started in run and debug
mode and spawns it with stdio pipes for the JSON-RPC channel.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..core.config_schema import Settings
from ..util.log import Log
from .errors import ServerConnectionError

log = Log.create({"service": "lsp.server"})

DEFAULT_SERVER_COMMAND = ["deepscan-server", "--stdio"]


class TransportKind(str, Enum):
    STDIO = "stdio"


class ServerHandle:
    """Handle to a running server process."""

    def __init__(self, process: subprocess.Popen, launch: "ServerLaunch"):
        self.process = process
        self.launch = launch


@dataclass
class ServerLaunch:
    """Command line, environment and transport for one launch mode."""
    command: List[str]
    env: Dict[str, str] = field(default_factory=dict)
    transport: TransportKind = TransportKind.STDIO


def _to_subprocess_env(extra: Optional[Dict[str, str]]) -> Dict[str, str]:
    return {**os.environ, **(extra or {})}


def _popen(launch: ServerLaunch, cwd: Optional[str]) -> subprocess.Popen:
    try:
        return subprocess.Popen(
            launch.command,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=_to_subprocess_env(launch.env),
        )
    except (OSError, ValueError) as e:
        log.error("failed to spawn server", {"command": launch.command, "error": str(e)})
        raise ServerConnectionError(f"cannot spawn {launch.command[0]!r}: {e}") from e


class ServerOptions:
    """Run and debug launch configurations for the server."""

    def __init__(self, run: ServerLaunch, debug: Optional[ServerLaunch] = None):
        self.run = run
        self.debug = debug or run

    def select(self, debug: bool) -> ServerLaunch:
        return self.debug if debug else self.run

    def spawn(self, debug: bool = False, cwd: Optional[str] = None) -> ServerHandle:
        """Start the server process.

        Raises:
            ServerConnectionError: if the process cannot be spawned or its
                stdio pipes are unavailable.
        """
        launch = self.select(debug)
        if launch.transport is not TransportKind.STDIO:
            raise ServerConnectionError(f"unsupported transport: {launch.transport}")

        process = _popen(launch, cwd)
        if not process.stdin or not process.stdout:
            process.kill()
            raise ServerConnectionError("server stdio not available")

        log.info("spawned server", {"pid": process.pid, "debug": debug})
        return ServerHandle(process, launch)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerOptions":
        command = list(settings.server_command or DEFAULT_SERVER_COMMAND)
        run = ServerLaunch(command=command)
        # Debug flags belong to the interpreter, ahead of the script arguments.
        debug = ServerLaunch(
            command=[command[0], *settings.debug_args, *command[1:]],
            env={"DEEPSCAN_DEBUG": "1"},
        )
        return cls(run=run, debug=debug)
