"""Hostname, OS, kernel and uptime."""

import platform
import socket
import time

import psutil

from novamon.models import SystemInfo

UNKNOWN = "Unknown"


def _os_release() -> dict[str, str]:
    try:
        return platform.freedesktop_os_release()
    except OSError:
        return {}


class SystemInfoMonitor:
    """Static system identity; stateless, so refresh takes no lock."""

    def refresh(self) -> SystemInfo:
        release = _os_release()
        boot_time = psutil.boot_time()
        return SystemInfo(
            hostname=socket.gethostname() or UNKNOWN,
            os_name=release.get("NAME") or platform.system() or UNKNOWN,
            os_version=release.get("VERSION_ID") or platform.version() or UNKNOWN,
            kernel_version=platform.release() or UNKNOWN,
            architecture=platform.machine() or UNKNOWN,
            uptime=max(int(time.time() - boot_time), 0),
            boot_time=int(boot_time),
        )
