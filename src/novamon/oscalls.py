"""
Signal and scheduling-priority primitives.

This module is the only place that touches raw OS priority and signal
calls. Every failure is translated into the novamon error taxonomy.
"""

import errno
import logging
import os

import psutil

from novamon.errors import PermissionDeniedError, ProcessNotFoundError, SystemAccessError

logger = logging.getLogger(__name__)

NICE_MIN = -20
NICE_MAX = 19


def read_nice(pid: int) -> int:
    """Return the niceness of ``pid``, or 0 when it cannot be read."""
    if hasattr(os, "getpriority"):
        try:
            return os.getpriority(os.PRIO_PROCESS, pid)
        except OSError:
            return 0
    try:
        return int(psutil.Process(pid).nice())
    except (psutil.Error, ValueError):
        return 0


def send_termination(proc: psutil.Process, force: bool) -> bool:
    """
    Send SIGTERM, or SIGKILL when ``force`` is set.

    Raises:
        ProcessNotFoundError: The process exited before the signal was sent.
        PermissionDeniedError: The OS refused to deliver the signal.
    """
    try:
        if force:
            proc.kill()
        else:
            proc.terminate()
    except psutil.NoSuchProcess as exc:
        raise ProcessNotFoundError(proc.pid) from exc
    except psutil.AccessDenied as exc:
        raise PermissionDeniedError(
            f"Failed to kill process {proc.pid}: permission denied or process protected"
        ) from exc
    logger.info(
        "sent %s to pid %d",
        "SIGKILL" if force else "SIGTERM",
        proc.pid,
        extra={"event": "process_signalled"},
    )
    return True


def set_nice(pid: int, nice: int) -> None:
    """
    Set the niceness of ``pid``.

    Args:
        pid: Target process id.
        nice: -20 (highest priority) to 19 (lowest priority). Values below
            zero need CAP_SYS_NICE or root.

    Raises:
        PermissionDeniedError: ``nice`` is out of range or the change was refused.
        ProcessNotFoundError: No such process.
        SystemAccessError: Any other OS failure.
    """
    if not NICE_MIN <= nice <= NICE_MAX:
        raise PermissionDeniedError(f"Nice value must be between {NICE_MIN} and {NICE_MAX}")
    if not hasattr(os, "setpriority"):
        raise SystemAccessError("setting process priority is not supported on this platform")

    try:
        os.setpriority(os.PRIO_PROCESS, pid, nice)
    except OSError as exc:
        if exc.errno in (errno.EPERM, errno.EACCES):
            raise PermissionDeniedError(
                f"cannot change priority of pid {pid}; negative nice values require CAP_SYS_NICE"
            ) from exc
        if exc.errno == errno.ESRCH:
            raise ProcessNotFoundError(pid) from exc
        raise SystemAccessError(f"Failed to set priority: errno {exc.errno}", exc.errno) from exc
    logger.info("set nice of pid %d to %d", pid, nice, extra={"event": "priority_changed"})
