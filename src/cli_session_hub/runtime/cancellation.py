"""Best-effort interrupt delivery to a running session process.

Cancellation is advisory: the CLI decides how to react to SIGINT, and on
platforms without a usable SIGINT primitive the request degrades to a logged
no-op. Callers learn whether a signal was actually delivered from the return
value instead of assuming success.
"""

from __future__ import annotations

import logging
import os
import signal

from .process_runner import IS_WINDOWS

__all__ = ["CancellationController"]

logger = logging.getLogger(__name__)


class CancellationController:
    """Delivers SIGINT to a process id where the platform supports it."""

    def __init__(self, *, supported: bool | None = None) -> None:
        self._supported = (not IS_WINDOWS) if supported is None else supported

    @property
    def supported(self) -> bool:
        return self._supported

    def interrupt(self, pid: int | None) -> bool:
        """Send an interrupt to pid.

        Args:
            pid: Target process id (None when the process is already gone)

        Returns:
            True if the signal was delivered, False otherwise
        """
        if pid is None:
            return False

        if not self._supported:
            logger.warning(f"Cancellation not supported on this platform (pid={pid})")
            return False

        try:
            os.kill(pid, signal.SIGINT)
        except ProcessLookupError:
            logger.debug(f"Interrupt target already exited pid={pid}")
            return False
        except OSError as e:
            logger.warning(f"Failed to interrupt pid={pid}: {e}")
            return False

        logger.debug(f"Sent SIGINT to pid={pid}")
        return True
