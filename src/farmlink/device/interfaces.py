"""Protocol interfaces for the per-platform device capability layer."""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from farmlink.shared.enums import Platform
from farmlink.shared.models import DeviceMetrics


@runtime_checkable
class DeviceBackend(Protocol):
    """Everything the relay needs from one physical device.

    Touch relay and capture scheduling consume only this interface, so
    they stay platform-agnostic.
    """

    device_id: str
    platform: Platform

    @property
    def supports_stream(self) -> bool:
        """Whether ``open_stream`` can produce a continuous encoded stream."""
        ...

    async def resolve_dimensions(self) -> tuple[int, int]:
        """Return the screen size in device pixels.

        Raises:
            DeviceError: If the device cannot be queried.
        """
        ...

    async def capture_frame(self) -> bytes:
        """Grab one still image of the screen as PNG bytes.

        Raises:
            CaptureError: If the grab fails.
        """
        ...

    async def open_stream(self) -> asyncio.subprocess.Process:
        """Spawn a subprocess whose stdout is a continuous H.264 stream.

        Raises:
            UnsupportedOperationError: If the platform has no stream primitive.
        """
        ...

    async def touch_down(self, x: int, y: int, *, timeout: float) -> None: ...

    async def touch_drag(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int, *, timeout: float) -> None: ...

    async def touch_up(self, x: int, y: int, *, timeout: float) -> None: ...

    async def tap(self, x: int, y: int) -> None: ...

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None: ...

    async def keyevent(self, keycode: int | str) -> None: ...

    async def text(self, text: str) -> None: ...

    async def get_clipboard(self) -> str: ...

    async def set_clipboard(self, text: str) -> None: ...

    async def set_location(self, latitude: float, longitude: float, altitude: float = 0) -> None: ...

    async def push_file(self, local_path: str, filename: str) -> str:
        """Push a local file into the device's download area.

        Returns:
            Remote path of the pushed file.
        """
        ...

    async def spawn_logs(self) -> asyncio.subprocess.Process:
        """Spawn a subprocess emitting device log lines on stdout."""
        ...

    async def start_recording(self, max_seconds: int) -> asyncio.subprocess.Process:
        """Start an on-device screen recording bounded by ``max_seconds``."""
        ...

    async def finish_recording(self, proc: asyncio.subprocess.Process, local_path: str) -> str:
        """Stop a recording started by ``start_recording`` and retrieve it.

        Returns:
            Local path of the retrieved recording.
        """
        ...

    async def metrics(self) -> DeviceMetrics:
        """Collect a best-effort metrics snapshot; failed fields are ``None``."""
        ...

    async def close(self) -> None:
        """Release client resources held for this device."""
        ...


@runtime_checkable
class BackendResolver(Protocol):
    """Protocol for turning a device identifier into a ``DeviceBackend``."""

    async def resolve(self, device_id: str) -> DeviceBackend:
        """Return a backend for the device.

        Raises:
            DeviceUnavailableError: If the device is not reachable from this host.
        """
        ...
