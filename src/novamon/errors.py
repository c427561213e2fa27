"""Exception hierarchy for novamon."""


class MonitorError(Exception):
    """Base exception for all novamon errors."""


class SystemAccessError(MonitorError):
    """Unexpected OS or library failure."""

    def __init__(self, detail: str, errno: int | None = None) -> None:
        self.detail = detail
        self.errno = errno
        super().__init__(f"Failed to access system information: {detail}")


class GpuNotAvailableError(MonitorError):
    """The requested GPU vendor or device is absent."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"GPU not available: {detail}")


class PermissionDeniedError(MonitorError):
    """A signal or priority change was rejected."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Permission denied: {detail}")


class ProcessNotFoundError(MonitorError):
    """The pid vanished between enumeration and action."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"Process not found: {pid}")


class StatePoisonedError(MonitorError):
    """Domain state was left half-mutated by a failed exclusive section."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} state is poisoned")
