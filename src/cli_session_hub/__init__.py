"""CLI Session Hub - 每个会话一个 CLI 子进程的监管器。

环境变量:
    CSH_EXECUTABLE: 会话使用的 CLI（默认 claude）
    CSH_CLI_ARGS: CLI 参数（默认 --print）
    CSH_LOG_DEBUG: 日志输出到临时文件

用法:
    uvx cli-session-hub
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
