"""Resolve a device identifier to the backend that can drive it."""

from __future__ import annotations

import logging

from farmlink.config import Settings
from farmlink.device.adb import AdbClient
from farmlink.device.android import AndroidBackend
from farmlink.device.interfaces import DeviceBackend
from farmlink.device.ios import IMobileDeviceClient, IosBackend, WdaClient
from farmlink.shared.exceptions import DeviceError, DeviceUnavailableError

logger = logging.getLogger(__name__)


class DeviceResolver:
    """Look a device ID up in every enumeration this host supports.

    Identifier spaces can overlap, so the ADB enumeration (the cheaper
    query) is tried first and the USB-tethered iOS one second.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        adb: AdbClient | None = None,
        ios: IMobileDeviceClient | None = None,
    ) -> None:
        self._settings = settings
        self._adb = adb or AdbClient(adb_bin=settings.adb_bin, timeout=settings.command_timeout_seconds)
        self._ios = ios or IMobileDeviceClient(
            idevice_id_bin=settings.idevice_id_bin,
            screenshot_bin=settings.idevicescreenshot_bin,
            info_bin=settings.ideviceinfo_bin,
            syslog_bin=settings.idevicesyslog_bin,
            setlocation_bin=settings.idevicesetlocation_bin,
            timeout=settings.command_timeout_seconds,
        )

    async def resolve(self, device_id: str) -> DeviceBackend:
        """Return a backend for ``device_id``.

        Raises:
            DeviceUnavailableError: If no enumeration lists the device.
        """
        if device_id in await self._enumerate_android():
            logger.info("device %s resolved via adb", device_id)
            return AndroidBackend(
                device_id,
                self._adb,
                motion_events=self._settings.android_motion_events,
                capture_timeout=self._settings.capture_timeout_seconds,
                stream_bit_rate=self._settings.stream_bit_rate,
                recording_bit_rate=self._settings.recording_bit_rate,
                recording_finalize_seconds=self._settings.recording_finalize_seconds,
            )

        if device_id in await self._enumerate_ios():
            logger.info("device %s resolved via libimobiledevice", device_id)
            wda: WdaClient | None = None
            if self._settings.wda_url:
                wda = WdaClient(
                    self._settings.wda_url.replace("{udid}", device_id),
                    timeout=self._settings.command_timeout_seconds,
                )
            return IosBackend(
                device_id,
                self._ios,
                wda=wda,
                capture_timeout=self._settings.capture_timeout_seconds,
            )

        raise DeviceUnavailableError(f"Device not connected: {device_id}")

    async def _enumerate_android(self) -> list[str]:
        try:
            return await self._adb.devices()
        except DeviceError as exc:
            logger.debug("adb enumeration unavailable: %s", exc)
            return []

    async def _enumerate_ios(self) -> list[str]:
        try:
            return await self._ios.devices()
        except DeviceError as exc:
            logger.debug("iOS enumeration unavailable: %s", exc)
            return []
