"""Per-interface network counters with real-time rates."""

import time
from collections.abc import Callable
from dataclasses import dataclass, field

import psutil

from novamon.models import NetworkInterface, NetworkSnapshot
from novamon.sync import Guarded
from novamon.trackers import RateTracker


def _mac_addresses() -> dict[str, str]:
    macs: dict[str, str] = {}
    try:
        addrs = psutil.net_if_addrs()
    except OSError:
        return macs
    for name, entries in addrs.items():
        for entry in entries:
            if entry.family == psutil.AF_LINK and entry.address:
                macs[name] = entry.address
                break
    return macs


@dataclass(slots=True)
class _NetworkState:
    rates: RateTracker = field(default_factory=RateTracker)


class NetworkMonitor:
    """Tracks download and upload rates per interface between refreshes."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._state = Guarded("network", _NetworkState())

    def refresh(self) -> NetworkSnapshot:
        interfaces: list[NetworkInterface] = []

        with self._state.write() as state:
            counters = psutil.net_io_counters(pernic=True) or {}
            now = self._clock()
            macs = _mac_addresses()

            for name in sorted(counters):
                nic = counters[name]
                download, upload = state.rates.observe(name, now, (nic.bytes_recv, nic.bytes_sent))
                interfaces.append(
                    NetworkInterface(
                        name=name,
                        mac_address=macs.get(name, ""),
                        received_bytes=nic.bytes_recv,
                        transmitted_bytes=nic.bytes_sent,
                        received_packets=nic.packets_recv,
                        transmitted_packets=nic.packets_sent,
                        errors_in=nic.errin,
                        errors_out=nic.errout,
                        download_rate_bps=download,
                        upload_rate_bps=upload,
                    )
                )

            state.rates.prune(counters)

        return NetworkSnapshot(
            interfaces=tuple(interfaces),
            total_received=sum(i.received_bytes for i in interfaces),
            total_transmitted=sum(i.transmitted_bytes for i in interfaces),
            total_download_rate=sum(i.download_rate_bps for i in interfaces),
            total_upload_rate=sum(i.upload_rate_bps for i in interfaces),
        )
