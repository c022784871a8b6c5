"""CSH 环境变量配置管理。

环境变量:
    CSH_EXECUTABLE: 会话使用的 CLI 可执行文件
        - 默认 claude，通过 PATH 解析

    CSH_CLI_ARGS: 传给 CLI 的参数（按 shell 规则拆分）
        - 默认 --print（非交互、每行输入一次响应）

    CSH_SINK_QUEUE_SIZE: 事件通道容量
        - 默认 5000，通道满时丢弃新事件并记录警告

    CSH_KILL_TIMEOUT: 强制终止后等待进程退出的时间（秒）
        - 默认 1.0

    CSH_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)

    CSH_SIGINT_MODE: SIGINT (Ctrl+C) 处理模式
        - cancel = 中断忙碌的会话（没有忙碌会话则退出）(默认)
        - exit = 直接退出进程
        - cancel_then_exit = 先中断会话，第二次才退出

    CSH_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "SigintMode"]


class SigintMode(Enum):
    """SIGINT 处理模式。

    - CANCEL: 只中断忙碌的会话，不退出（如果没有忙碌会话则退出）
    - EXIT: 直接退出进程
    - CANCEL_THEN_EXIT: 先中断会话，第二次 SIGINT 才退出
    """

    CANCEL = "cancel"
    EXIT = "exit"
    CANCEL_THEN_EXIT = "cancel_then_exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """从字符串解析模式，无效值返回 CANCEL。"""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.CANCEL


DEFAULT_EXECUTABLE = "claude"
DEFAULT_CLI_ARGS: tuple[str, ...] = ("--print",)
DEFAULT_SINK_QUEUE_SIZE = 5000
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_cli_args(value: str | None) -> tuple[str, ...]:
    """解析 CLI 参数，空值使用默认参数。"""
    if not value or not value.strip():
        return DEFAULT_CLI_ARGS
    try:
        return tuple(shlex.split(value))
    except ValueError:
        return DEFAULT_CLI_ARGS


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    if not value:
        return default
    try:
        return max(low, min(int(value), high))
    except ValueError:
        return default


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


@dataclass
class Config:
    """CSH 配置。

    Attributes:
        executable: CLI 可执行文件名或路径
        cli_args: 传给 CLI 的参数
        sink_queue_size: 事件通道容量
        kill_timeout: 强制终止后的等待时间（秒）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
        sigint_mode: SIGINT 处理模式
        sigint_double_tap_window: 双击退出窗口时间（秒）
    """

    executable: str = DEFAULT_EXECUTABLE
    cli_args: tuple[str, ...] = field(default=DEFAULT_CLI_ARGS)
    sink_queue_size: int = DEFAULT_SINK_QUEUE_SIZE
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.CANCEL
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(executable={self.executable}, "
            f"cli_args={' '.join(self.cli_args)}, "
            f"sink_queue_size={self.sink_queue_size}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "cli-session-hub"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"csh_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("CSH_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    sigint_mode = os.environ.get("CSH_SIGINT_MODE")

    return Config(
        executable=(os.environ.get("CSH_EXECUTABLE") or "").strip() or DEFAULT_EXECUTABLE,
        cli_args=_parse_cli_args(os.environ.get("CSH_CLI_ARGS")),
        sink_queue_size=_parse_int(
            os.environ.get("CSH_SINK_QUEUE_SIZE"), DEFAULT_SINK_QUEUE_SIZE, 1, 100_000
        ),
        kill_timeout=_parse_float(
            os.environ.get("CSH_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 30.0
        ),
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=SigintMode.from_string(sigint_mode) if sigint_mode else SigintMode.CANCEL,
        sigint_double_tap_window=_parse_float(
            os.environ.get("CSH_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
