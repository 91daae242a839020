"""
Process supervision for stdio tool servers.

The supervisor owns the child's lifetime: it spawns the process with three
pipes, exposes an exit future that resolves as soon as the child is gone,
and tears it down with a graceful stop followed by a forced kill.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field

from mcp_runtime.errors import UnavailableError

logger = logging.getLogger(__name__)

# Tool payloads (paper abstracts, scraped pages) arrive as a single line.
STREAM_LIMIT = 16 * 1024 * 1024

DEFAULT_TERMINATE_GRACE = 5.0


@dataclass
class ProcessHandle:
    """A running tool server process and its standard streams."""
    process: asyncio.subprocess.Process
    command: str
    args: list[str]
    exit_future: asyncio.Future
    terminated: bool = False
    terminate_count: int = field(default=0)

    @property
    def stdin(self) -> asyncio.StreamWriter:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self.process.stderr

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    def is_alive(self) -> bool:
        return self.process.returncode is None and not self.exit_future.done()

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


class ProcessSupervisor:
    """
    Spawns and terminates tool server processes.

    A single supervisor can be shared by many sessions; it keeps no
    per-process state beyond a spawn counter.
    """

    def __init__(self, terminate_grace: float = DEFAULT_TERMINATE_GRACE):
        self.terminate_grace = terminate_grace
        self.spawn_count = 0

    async def start(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> ProcessHandle:
        """
        Launch a tool server.

        Args:
            command: Executable to run (resolved on PATH).
            args: Argument vector after the executable.
            env: Extra environment variables, layered over ours.

        Raises:
            UnavailableError: the executable is missing or cannot be spawned.
        """
        args = list(args or [])
        child_env = dict(os.environ)
        if env:
            child_env.update(env)

        logger.info(f"Starting tool server: {' '.join([command, *args])}")
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            raise UnavailableError(f"tool server executable not found: {command}") from e
        except OSError as e:
            raise UnavailableError(f"failed to spawn tool server {command}: {e}") from e

        self.spawn_count += 1
        exit_future = asyncio.ensure_future(process.wait())
        handle = ProcessHandle(process=process, command=command, args=args, exit_future=exit_future)
        logger.debug(f"Tool server started (pid={process.pid})")
        return handle

    async def terminate(self, handle: ProcessHandle) -> int | None:
        """
        Stop a tool server: close stdin, SIGTERM, wait, then SIGKILL.

        Safe to call more than once; only the first call signals the process.

        Returns:
            The exit code, or None if it could not be collected.
        """
        if handle.terminated:
            return handle.returncode
        handle.terminated = True
        handle.terminate_count += 1

        process = handle.process
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(asyncio.shield(handle.exit_future), self.terminate_grace)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Tool server pid={process.pid} ignored SIGTERM for "
                    f"{self.terminate_grace}s, killing"
                )
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await handle.exit_future

        logger.info(f"Tool server stopped (pid={process.pid}, code={process.returncode})")
        return process.returncode
