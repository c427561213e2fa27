"""Reader for the device-attribute tree under /sys."""

from pathlib import Path


class DeviceTree:
    """
    Read-only view of a sysfs-like directory tree.

    Every read returns None instead of raising when the attribute is
    missing or unreadable, so callers can treat each attribute as
    independently optional.
    """

    def __init__(self, root: str | Path = "/sys") -> None:
        self._root = Path(root)

    def path(self, *parts: str | Path) -> Path:
        return self._root.joinpath(*parts)

    def read(self, *parts: str | Path) -> str | None:
        try:
            return self.path(*parts).read_text(encoding="utf-8", errors="replace").strip()
        except OSError:
            return None

    def read_int(self, *parts: str | Path) -> int | None:
        text = self.read(*parts)
        if text is None:
            return None
        try:
            return int(text, 0) if text.lower().startswith("0x") else int(text)
        except ValueError:
            return None

    def children(self, *parts: str | Path) -> list[str]:
        """Sorted entry names of a directory, empty when absent."""
        try:
            return sorted(entry.name for entry in self.path(*parts).iterdir())
        except OSError:
            return []
