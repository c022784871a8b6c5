"""Runtime module for session subprocess management.

This module provides isolated process spawning, line-oriented pipe I/O,
reliable forced termination and advisory interrupt delivery.
"""

from __future__ import annotations

from .cancellation import CancellationController
from .cli_check import CliStatus, check_cli
from .process_runner import ProcessHandle, ProcessRunner, ProcessSpec

__all__ = [
    "CancellationController",
    "CliStatus",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "check_cli",
]
