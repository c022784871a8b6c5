"""Process runner for long-lived, line-oriented CLI sessions.

cli-session-hub runtime module v0.1.0

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Three piped standard streams kept open for the lifetime of a session
- Line-oriented stdin writes and stdout reads
- Concurrent stderr draining into a bounded tail buffer
- Explicit forced termination (SIGKILL to the process group)

Key design points:
- POSIX: start_new_session=True so the child does not receive our SIGINT
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- ProcessHandle.kill() is the single teardown routine; every owner calls it
  on every removal path instead of relying on garbage collection
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections import deque
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import SpawnFailure, WriteFailure

__all__ = [
    "IS_WINDOWS",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL
DEFAULT_STDERR_TAIL_LINES = 200
STDERR_FLUSH_TIMEOUT = 0.5

# asyncio's default StreamReader limit is 64 KiB, too small for tool payloads
STREAM_LIMIT = 16 * 1024 * 1024


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process
        env: Environment variables (None = inherit parent)
    """

    argv: Sequence[str]
    cwd: Path
    env: Mapping[str, str] | None = None


class ProcessHandle:
    """Owns one running child process and its pipes.

    The handle is created by ProcessRunner.spawn() and must be torn down with
    kill() by whoever removes it from service.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        stderr_tail_lines: int = DEFAULT_STDERR_TAIL_LINES,
    ) -> None:
        self._process = process
        self._kill_timeout = kill_timeout
        self._stderr_tail: deque[str] = deque(maxlen=stderr_tail_lines)
        self._stderr_task: asyncio.Task[None] | None = None
        self._killed = False

        if process.stderr is not None:
            self._stderr_task = asyncio.create_task(
                self._drain_stderr(), name=f"stderr-drain-{process.pid}"
            )

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_alive(self) -> bool:
        return self._process.returncode is None and not self._killed

    @property
    def stderr_tail(self) -> list[str]:
        """Most recent stderr lines (bounded)."""
        return list(self._stderr_tail)

    async def write_line(self, text: str) -> None:
        """Write text plus a line terminator to stdin and flush it.

        Raises:
            WriteFailure: stdin is unavailable or the write/drain failed
        """
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise WriteFailure("CLI stdin not available")

        try:
            stdin.write(text.encode("utf-8") + b"\n")
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WriteFailure("Failed to write to CLI stdin", str(e)) from e
        except OSError as e:
            raise WriteFailure("Failed to write to CLI stdin", str(e)) from e

    async def lines(self) -> AsyncIterator[str]:
        """Yield decoded stdout lines (line terminator stripped) until EOF."""
        stdout = self._process.stdout
        if stdout is None:
            return

        while True:
            try:
                raw = await stdout.readline()
            except ValueError as e:
                # Line exceeded STREAM_LIMIT; the reader has already discarded it
                logger.warning(f"Dropped oversized stdout line pid={self.pid}: {e}")
                continue

            if not raw:
                return

            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def kill(self) -> None:
        """Forcibly terminate the process group and release the pipes.

        Idempotent and shielded from cancellation so teardown always completes.
        """
        try:
            await asyncio.shield(self._do_kill())
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_kill()
            raise

    async def wait(self) -> int:
        return await self._process.wait()

    async def _do_kill(self) -> None:
        if self._killed:
            return
        self._killed = True

        process = self._process
        pid = process.pid

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            logger.debug(f"Killing subprocess pid={pid}")
            try:
                if IS_WINDOWS:
                    self._windows_kill()
                else:
                    self._posix_kill()
            except ProcessLookupError:
                logger.debug(f"Subprocess already exited pid={pid}")

            try:
                await asyncio.wait_for(process.wait(), timeout=self._kill_timeout)
                logger.debug(f"Subprocess killed pid={pid} returncode={process.returncode}")
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        if self._stderr_task is not None and not self._stderr_task.done():
            # Pick up whatever the process wrote to stderr before exiting
            await asyncio.wait({self._stderr_task}, timeout=STDERR_FLUSH_TIMEOUT)
        if self._stderr_task is not None and not self._stderr_task.done():
            self._stderr_task.cancel()
            try:
                await self._stderr_task
            except asyncio.CancelledError:
                pass

    def _posix_kill(self) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            self._process.kill()

    def _windows_kill(self) -> None:
        """Force kill on Windows."""
        self._process.kill()
        logger.debug(f"Called kill() on pid={self._process.pid}")

    async def _drain_stderr(self) -> None:
        """Drain stderr to prevent buffer deadlock, keeping a bounded tail."""
        stderr = self._process.stderr
        if stderr is None:
            return

        while True:
            try:
                raw = await stderr.readline()
            except ValueError:
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line:
                self._stderr_tail.append(line)
                logger.debug(f"[stderr pid={self.pid}] {line[:500]}")


@dataclass
class ProcessRunner:
    """Cross-platform spawner for supervised session processes.

    Example:
        runner = ProcessRunner()
        handle = await runner.spawn(
            ProcessSpec(argv=["/usr/bin/claude", "--print"], cwd=Path("/workspace"))
        )
        await handle.write_line("hello")
        async for line in handle.lines():
            process_output(line)
        await handle.kill()
    """

    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    stderr_tail_lines: int = DEFAULT_STDERR_TAIL_LINES

    async def spawn(self, spec: ProcessSpec) -> ProcessHandle:
        """Start the subprocess with stdin/stdout/stderr all piped.

        Raises:
            SpawnFailure: the OS refused to start the process
        """
        kwargs = self._build_subprocess_kwargs(spec)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                limit=STREAM_LIMIT,
                **kwargs,
            )
        except OSError as e:
            raise SpawnFailure(f"Failed to spawn CLI: {e}", str(spec.argv[0])) from e

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv[0]} cwd={spec.cwd}"
        )

        return ProcessHandle(
            process,
            kill_timeout=self.kill_timeout,
            stderr_tail_lines=self.stderr_tail_lines,
        )

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs
