"""Periodic device registry sync: enumerate ADB devices and upsert rows."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from farmlink.config import Settings, get_settings
from farmlink.device.adb import AdbClient
from farmlink.shared.db import create_pool
from farmlink.shared.enums import DeviceStatus, Platform
from farmlink.shared.exceptions import DeviceError
from farmlink.shared.models import DeviceRecord
from farmlink.shared.repository import DeviceRepository

logger = logging.getLogger(__name__)


class _DeviceStore(Protocol):
    async def upsert(self, device: DeviceRecord) -> None: ...

    async def mark_offline(self, host_name: str, present_ids: list[str]) -> int: ...


async def _getprop_or(adb: AdbClient, serial: str, name: str, default: str) -> str:
    try:
        value = await adb.getprop(serial, name)
    except DeviceError as exc:
        logger.warning("getprop %s failed on %s: %s", name, serial, exc)
        return default
    return value.strip() or default


async def sync_once(adb: AdbClient, repo: _DeviceStore, *, host_name: str) -> list[str]:
    """Run one enumeration pass.

    Returns:
        Serials found attached on this pass.
    """
    devices = await adb.devices_long()
    found: list[str] = []
    for serial, _props in devices:
        model = await _getprop_or(adb, serial, "ro.product.model", "Android Device")
        os_version = await _getprop_or(adb, serial, "ro.build.version.release", "unknown")
        logger.info("found device %s - %s (Android %s)", serial, model, os_version)
        try:
            await repo.upsert(
                DeviceRecord(
                    id=serial,
                    platform=Platform.ANDROID,
                    model=model,
                    os_version=os_version,
                    status=DeviceStatus.FREE,
                    host_name=host_name,
                )
            )
        except Exception as exc:
            logger.error("failed to update device %s: %s", serial, exc)
            continue
        found.append(serial)

    offline = await repo.mark_offline(host_name, [serial for serial, _props in devices])
    if offline:
        logger.info("marked %d device(s) offline on %s", offline, host_name)
    logger.info("total devices found: %d", len(devices))
    return found


async def run_worker(
    adb: AdbClient,
    repo: _DeviceStore,
    *,
    host_name: str,
    interval_seconds: float = 30,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Poll until ``stop_event`` is set; one failed pass never ends the loop."""
    logger.info("device sync starting for host %s every %ss", host_name, interval_seconds)
    stop_event = stop_event or asyncio.Event()
    while not stop_event.is_set():
        try:
            await sync_once(adb, repo, host_name=host_name)
        except Exception as exc:  # pragma: no cover - long running worker resilience
            logger.exception("device sync pass failed: %s", exc)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue
    logger.info("stop_event set; shutting down device sync")


async def run_from_settings(settings: Settings) -> None:
    """Wire dependencies from settings and start the sync loop."""
    pool = await create_pool(settings)
    adb = AdbClient(adb_bin=settings.adb_bin, timeout=settings.command_timeout_seconds)
    try:
        await run_worker(
            adb,
            DeviceRepository(pool),
            host_name=settings.host_name,
            interval_seconds=settings.sync_interval_seconds,
        )
    finally:
        await pool.close()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_from_settings(get_settings()))


if __name__ == "__main__":
    main()
