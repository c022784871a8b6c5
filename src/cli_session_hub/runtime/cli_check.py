"""CLI availability check.

Runs `<executable> --version` to report whether the session CLI is installed.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Callable

from pydantic import BaseModel

__all__ = ["CliStatus", "check_cli"]

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 10.0


class CliStatus(BaseModel):
    """Result of a CLI availability check."""

    installed: bool
    version: str | None = None
    path: str | None = None
    error: str | None = None


async def check_cli(
    executable: str,
    *,
    timeout: float = DEFAULT_CHECK_TIMEOUT,
    which: Callable[[str], str | None] = shutil.which,
) -> CliStatus:
    """Check whether executable is installed and report its version.

    Never raises for a missing or broken CLI; the failure is described in
    the returned CliStatus instead.
    """
    path = which(executable)
    if path is None:
        return CliStatus(installed=False, error=f"'{executable}' not found in PATH")

    try:
        process = await asyncio.create_subprocess_exec(
            path,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CliStatus(installed=False, path=path, error=str(e))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CliStatus(installed=False, path=path, error="Version check timed out")

    if process.returncode != 0:
        error = stderr.decode("utf-8", errors="replace").strip()
        logger.debug(f"CLI version check failed: {error}")
        return CliStatus(installed=False, path=path, error=error or None)

    return CliStatus(
        installed=True,
        version=stdout.decode("utf-8", errors="replace").strip(),
        path=path,
    )
