"""CLI 可用性检查测试。"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from cli_session_hub.runtime.cli_check import CliStatus, check_cli
from cli_session_hub.runtime.process_runner import IS_WINDOWS


def write_script(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(0o755)
    return path


class TestCheckCli:
    @pytest.mark.asyncio
    async def test_not_in_path(self):
        status = await check_cli("claude", which=lambda _: None)

        assert status == CliStatus(installed=False, error="'claude' not found in PATH")

    @pytest.mark.skipif(IS_WINDOWS, reason="shebang scripts")
    @pytest.mark.asyncio
    async def test_installed(self, tmp_path: Path):
        script = write_script(tmp_path / "claude", "print('1.0.42 (Claude Code)')\n")

        status = await check_cli("claude", which=lambda _: str(script))

        assert status.installed is True
        assert status.version == "1.0.42 (Claude Code)"
        assert status.path == str(script)
        assert status.error is None

    @pytest.mark.skipif(IS_WINDOWS, reason="shebang scripts")
    @pytest.mark.asyncio
    async def test_version_command_fails(self, tmp_path: Path):
        script = write_script(
            tmp_path / "claude",
            "import sys\nprint('broken install', file=sys.stderr)\nsys.exit(1)\n",
        )

        status = await check_cli("claude", which=lambda _: str(script))

        assert status.installed is False
        assert status.error == "broken install"

    @pytest.mark.skipif(IS_WINDOWS, reason="shebang scripts")
    @pytest.mark.asyncio
    async def test_timeout(self, tmp_path: Path):
        script = write_script(tmp_path / "claude", "import time\ntime.sleep(30)\n")

        status = await check_cli("claude", timeout=0.5, which=lambda _: str(script))

        assert status.installed is False
        assert status.error == "Version check timed out"

    @pytest.mark.asyncio
    async def test_not_executable(self, tmp_path: Path):
        path = tmp_path / "claude"
        path.write_text("not a program", encoding="utf-8")

        status = await check_cli("claude", which=lambda _: str(path))

        assert status.installed is False
        assert status.error
