"""ProcessRunner unit tests.

Test coverage:
- Spawning with piped standard streams
- Line-oriented stdin writes and stdout reads
- Process isolation (new session/process group)
- Forced termination (idempotent, shielded from cancellation)
- Stderr draining
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest

from cli_session_hub.errors import ErrorCode, SpawnFailure, WriteFailure
from cli_session_hub.runtime.process_runner import (
    IS_WINDOWS,
    ProcessRunner,
    ProcessSpec,
)

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX process semantics")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runner() -> ProcessRunner:
    """Create ProcessRunner instance with a short kill timeout for testing."""
    return ProcessRunner(kill_timeout=0.5)


def python_spec(code: str, cwd: Path) -> ProcessSpec:
    return ProcessSpec(argv=[sys.executable, "-c", code], cwd=cwd)


ECHO_LINES = (
    "import sys\n"
    "for line in sys.stdin:\n"
    "    print('got:' + line.strip(), flush=True)\n"
)


# =============================================================================
# Basic Execution Tests
# =============================================================================


class TestSpawn:
    """Test process spawning."""

    @pytest.mark.asyncio
    async def test_reads_stdout_lines(self, workspace: Path, runner: ProcessRunner):
        """Test that stdout is yielded line by line without terminators."""
        handle = await runner.spawn(
            ProcessSpec(argv=["sh", "-c", "echo line1; echo line2; echo line3"], cwd=workspace)
        )

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert lines == ["line1", "line2", "line3"]

    @pytest.mark.asyncio
    async def test_working_directory(self, workspace: Path, runner: ProcessRunner):
        """Test that working directory is correctly set."""
        handle = await runner.spawn(ProcessSpec(argv=["pwd"], cwd=workspace))

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert Path(lines[0]).resolve() == workspace.resolve()

    @pytest.mark.asyncio
    async def test_environment(self, workspace: Path, runner: ProcessRunner):
        """Test that a custom environment replaces the inherited one."""
        spec = ProcessSpec(
            argv=[sys.executable, "-c", "import os; print(os.environ.get('CSH_TEST_VAR'))"],
            cwd=workspace,
            env={**os.environ, "CSH_TEST_VAR": "present"},
        )
        handle = await runner.spawn(spec)

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert lines == ["present"]

    @pytest.mark.asyncio
    async def test_missing_executable(self, workspace: Path, runner: ProcessRunner):
        """Test that an OS-level exec error surfaces as SpawnFailure."""
        spec = ProcessSpec(argv=[str(workspace / "does-not-exist")], cwd=workspace)

        with pytest.raises(SpawnFailure) as exc_info:
            await runner.spawn(spec)

        assert exc_info.value.code == ErrorCode.SPAWN_FAILED

    @pytest.mark.asyncio
    async def test_new_session(self, workspace: Path, runner: ProcessRunner):
        """Test that the child leads its own process group."""
        handle = await runner.spawn(
            python_spec("import os; print(os.getpgid(0) == os.getpid(), flush=True)", workspace)
        )

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert lines == ["True"]
        assert os.getpgid(0) != handle.pid


# =============================================================================
# Stdin Tests
# =============================================================================


class TestStdin:
    """Test line-oriented stdin writes."""

    @pytest.mark.asyncio
    async def test_write_line_round_trip(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(python_spec(ECHO_LINES, workspace))
        try:
            await handle.write_line("hello")
            lines = handle.lines()
            assert await asyncio.wait_for(lines.__anext__(), timeout=5) == "got:hello"

            await handle.write_line("world")
            assert await asyncio.wait_for(lines.__anext__(), timeout=5) == "got:world"
        finally:
            await handle.kill()

    @pytest.mark.asyncio
    async def test_write_after_kill(self, workspace: Path, runner: ProcessRunner):
        """Test that writing to a torn-down handle raises WriteFailure."""
        handle = await runner.spawn(python_spec(ECHO_LINES, workspace))
        await handle.kill()

        with pytest.raises(WriteFailure) as exc_info:
            await handle.write_line("late")

        assert exc_info.value.code == ErrorCode.WRITE_FAILED

    @pytest.mark.asyncio
    async def test_write_to_exited_process(self, workspace: Path, runner: ProcessRunner):
        """Test that writing to a process that closed its stdin eventually fails."""
        handle = await runner.spawn(python_spec("import sys; sys.stdin.close()", workspace))
        await handle.wait()

        with pytest.raises(WriteFailure):
            # The first write may land in the pipe buffer; keep writing until EPIPE
            for _ in range(1000):
                await handle.write_line("x" * 1024)

        await handle.kill()


# =============================================================================
# Output Tests
# =============================================================================


class TestOutput:
    """Test stdout decoding and stderr draining."""

    @pytest.mark.asyncio
    async def test_long_line(self, workspace: Path, runner: ProcessRunner):
        """Test that lines above asyncio's default 64 KiB limit are read whole."""
        handle = await runner.spawn(
            python_spec("print('a' * 200000, flush=True)", workspace)
        )

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert len(lines) == 1
        assert len(lines[0]) == 200000

    @pytest.mark.asyncio
    async def test_invalid_utf8_replaced(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            python_spec("import sys; sys.stdout.buffer.write(b'ok\\xff\\n')", workspace)
        )

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert lines == ["ok\ufffd"]

    @pytest.mark.asyncio
    async def test_crlf_stripped(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(
            python_spec("import sys; sys.stdout.buffer.write(b'win\\r\\n')", workspace)
        )

        lines = [line async for line in handle.lines()]
        await handle.kill()

        assert lines == ["win"]

    @pytest.mark.asyncio
    async def test_stderr_tail(self, workspace: Path, runner: ProcessRunner):
        """Test that stderr is drained into a bounded tail buffer."""
        code = (
            "import sys\n"
            "for i in range(5):\n"
            "    print(f'err{i}', file=sys.stderr)\n"
            "sys.exit(2)\n"
        )
        runner = ProcessRunner(kill_timeout=0.5, stderr_tail_lines=3)
        handle = await runner.spawn(python_spec(code, workspace))

        assert await handle.wait() == 2
        await handle.kill()

        assert handle.stderr_tail == ["err2", "err3", "err4"]

    @pytest.mark.asyncio
    async def test_large_stderr_does_not_block(self, workspace: Path, runner: ProcessRunner):
        """Test that a chatty stderr cannot fill the pipe and stall the child."""
        code = (
            "import sys\n"
            "sys.stderr.write('e' * 1_000_000)\n"
            "print('done', flush=True)\n"
        )
        handle = await runner.spawn(python_spec(code, workspace))

        lines = await asyncio.wait_for(
            _collect(handle.lines()), timeout=10
        )
        await handle.kill()

        assert lines == ["done"]


async def _collect(lines) -> list[str]:
    return [line async for line in lines]


def _is_gone(pid: int) -> bool:
    """True if pid no longer runs (reaped, or a zombie nobody has reaped yet)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    try:
        with open(f"/proc/{pid}/stat", encoding="utf-8") as f:
            return f.read().rsplit(")", 1)[1].split()[0] == "Z"
    except OSError:
        return False


# =============================================================================
# Termination Tests
# =============================================================================


class TestKill:
    """Test forced termination."""

    @pytest.mark.asyncio
    async def test_kill_running_process(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(60)", workspace))
        assert handle.is_alive is True

        await asyncio.wait_for(handle.kill(), timeout=5)

        assert handle.is_alive is False
        assert handle.returncode is not None

    @pytest.mark.asyncio
    async def test_kill_is_idempotent(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(python_spec("import time; time.sleep(60)", workspace))

        await handle.kill()
        await handle.kill()

        assert handle.returncode is not None

    @pytest.mark.asyncio
    async def test_kill_ignores_sigterm_handlers(self, workspace: Path, runner: ProcessRunner):
        """Test that SIGKILL terminates a child that ignores SIGTERM and SIGINT."""
        code = (
            "import signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            "signal.signal(signal.SIGINT, signal.SIG_IGN)\n"
            "print('ready', flush=True)\n"
            "time.sleep(60)\n"
        )
        handle = await runner.spawn(python_spec(code, workspace))
        lines = handle.lines()
        assert await asyncio.wait_for(lines.__anext__(), timeout=5) == "ready"

        await asyncio.wait_for(handle.kill(), timeout=5)

        assert handle.returncode is not None

    @pytest.mark.asyncio
    async def test_kill_reaches_process_group(self, workspace: Path, runner: ProcessRunner):
        """Test that grandchildren in the same group are terminated too."""
        code = (
            "import subprocess, sys, time\n"
            "child = subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)'])\n"
            "print(child.pid, flush=True)\n"
            "time.sleep(60)\n"
        )
        handle = await runner.spawn(python_spec(code, workspace))
        lines = handle.lines()
        grandchild = int(await asyncio.wait_for(lines.__anext__(), timeout=5))

        await handle.kill()

        for _ in range(50):
            if _is_gone(grandchild):
                break
            await asyncio.sleep(0.05)
        else:
            pytest.fail("grandchild still alive after group kill")

    @pytest.mark.asyncio
    async def test_kill_survives_cancellation(self, workspace: Path, runner: ProcessRunner):
        """Test that cancelling the caller does not abort teardown."""
        handle = await runner.spawn(python_spec("import time; time.sleep(60)", workspace))

        task = asyncio.create_task(handle.kill())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.wait_for(handle.wait(), timeout=5)
        assert handle.returncode is not None

    @pytest.mark.asyncio
    async def test_eof_after_kill(self, workspace: Path, runner: ProcessRunner):
        handle = await runner.spawn(python_spec(ECHO_LINES, workspace))

        await handle.kill()
        lines = await asyncio.wait_for(_collect(handle.lines()), timeout=5)

        assert lines == []
