"""Parsers for the text sources behind a device metrics snapshot.

Each parser takes raw command output and returns one snapshot field.
Parsers raise ``ValueError`` when the output carries no usable value so
that callers can null out that field alone.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable
from typing import TypeVar

from farmlink.shared.models import BatteryStats, CpuStats, MemoryStats, NetworkStats

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LEVEL_RE = re.compile(r"level:\s*(\d+)")
_TEMPERATURE_RE = re.compile(r"temperature:\s*(\d+)")
_HEALTH_RE = re.compile(r"health:\s*(\d+)")
_TOTAL_RAM_RE = re.compile(r"Total RAM:\s*([\d,]+)K")
_MEM_AVAILABLE_RE = re.compile(r"MemAvailable:\s*(\d+)")
_LOADAVG_RE = re.compile(r"([\d.]+)")
_NET_IFACES = ("wlan0", "eth0", "rmnet", "ccmni")

# Load average is mapped onto a rough percentage assuming four cores.
_ASSUMED_CORES = 4


def parse_battery(dumpsys_battery: str) -> BatteryStats:
    level = _LEVEL_RE.search(dumpsys_battery)
    if level is None:
        raise ValueError("battery level missing")
    temperature = _TEMPERATURE_RE.search(dumpsys_battery)
    health = _HEALTH_RE.search(dumpsys_battery)
    return BatteryStats(
        level=int(level.group(1)),
        temperature=round(int(temperature.group(1)) / 10) if temperature else None,
        health=int(health.group(1)) if health else None,
    )


def parse_memory(dumpsys_meminfo: str, proc_meminfo: str) -> MemoryStats:
    total = _TOTAL_RAM_RE.search(dumpsys_meminfo)
    available = _MEM_AVAILABLE_RE.search(proc_meminfo)
    if total is None or available is None:
        raise ValueError("memory totals missing")
    total_kb = int(total.group(1).replace(",", ""))
    free_kb = int(available.group(1))
    if total_kb <= 0:
        raise ValueError("total memory is zero")
    used_kb = total_kb - free_kb
    return MemoryStats(
        used_mb=round(used_kb / 1024),
        total_mb=round(total_kb / 1024),
        percent=round(used_kb / total_kb * 100),
    )


def parse_cpu(loadavg: str) -> CpuStats:
    match = _LOADAVG_RE.search(loadavg)
    if match is None:
        raise ValueError("loadavg missing")
    load = float(match.group(1))
    return CpuStats(usage=min(round(load * 100 / _ASSUMED_CORES), 100))


def parse_network(proc_net_dev: str) -> NetworkStats:
    """Return rx/tx totals in MB for the first recognised interface."""
    for line in proc_net_dev.splitlines():
        name, sep, counters = line.partition(":")
        if not sep or not name.strip().startswith(_NET_IFACES):
            continue
        fields = counters.split()
        if len(fields) < 9:
            continue
        return NetworkStats(
            download_mb=round(int(fields[0]) / 1_048_576, 2),
            upload_mb=round(int(fields[8]) / 1_048_576, 2),
        )
    raise ValueError("no known network interface")


async def best_effort(coro: Awaitable[T], field: str, device_id: str) -> T | None:
    """Await one snapshot field, turning any failure into ``None``."""
    try:
        return await coro
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.debug("metrics field %s unavailable for %s: %s", field, device_id, exc)
        return None
