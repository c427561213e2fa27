"""RAM and swap usage."""

import psutil

from novamon.models import MemorySnapshot


class MemoryMonitor:
    """Memory readings carry no history, so refresh needs no guarded state."""

    def refresh(self) -> MemorySnapshot:
        vm = psutil.virtual_memory()
        try:
            swap = psutil.swap_memory()
            total_swap, used_swap = swap.total, swap.used
        except (OSError, RuntimeError):
            total_swap = used_swap = 0

        return MemorySnapshot(
            total_memory=vm.total,
            used_memory=vm.used,
            available_memory=vm.available,
            total_swap=total_swap,
            used_swap=used_swap,
            memory_usage_percent=(vm.used / vm.total * 100.0) if vm.total > 0 else 0.0,
            swap_usage_percent=(used_swap / total_swap * 100.0) if total_swap > 0 else 0.0,
        )
