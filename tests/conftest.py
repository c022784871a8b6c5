"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cli_session_hub.config import reload_config  # noqa: E402
from cli_session_hub.notifications import Notification  # noqa: E402

# 测试用假 CLI
FAKE_CLI = Path(__file__).parent / "fixtures" / "fake_cli.py"

_CSH_ENV_VARS = (
    "CSH_EXECUTABLE",
    "CSH_CLI_ARGS",
    "CSH_SINK_QUEUE_SIZE",
    "CSH_KILL_TIMEOUT",
    "CSH_LOG_DEBUG",
    "CSH_SIGINT_MODE",
    "CSH_SIGINT_DOUBLE_TAP_WINDOW",
)


class RecordingSink:
    """记录所有事件的同步 sink。"""

    def __init__(self) -> None:
        self.events: list[Notification] = []

    def push(self, payload: Notification) -> None:
        self.events.append(payload)

    def for_session(self, session_id: str) -> list[Notification]:
        return [e for e in self.events if e.session_id == session_id]

    def statuses(self, session_id: str) -> list[str]:
        return [
            e.status.value
            for e in self.for_session(session_id)
            if e.event == "claude_status"
        ]

    def text(self, session_id: str) -> str:
        return "".join(
            e.chunk for e in self.for_session(session_id) if e.event == "claude_output"
        )

    async def wait_for(self, predicate, timeout: float = 5.0) -> None:
        """轮询等待直到 predicate(self) 为真。"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate(self):
            if loop.time() > deadline:
                raise AssertionError(f"Timed out waiting; events={self.events}")
            await asyncio.sleep(0.02)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用干净的环境变量配置。"""
    for name in _CSH_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    reload_config()


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def fake_cli() -> Path:
    """假 CLI 脚本路径。"""
    return FAKE_CLI


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """临时工作目录。"""
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
