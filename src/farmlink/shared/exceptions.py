"""Hierarchical exception types for the farmlink relay."""

from __future__ import annotations


class FarmlinkError(Exception):
    """Base exception for all farmlink errors."""


# ── Device ──────────────────────────────────────────────────────


class DeviceError(FarmlinkError):
    """A device-facing command failed."""


class AdbError(DeviceError):
    """ADB connection or command error."""


class IosDeviceError(DeviceError):
    """libimobiledevice or WebDriverAgent command error."""


class DeviceUnavailableError(DeviceError):
    """Device is not attached to this host under any enumeration."""


class UnsupportedOperationError(DeviceError):
    """The device platform has no primitive for the requested operation."""


# ── Relay ───────────────────────────────────────────────────────


class CaptureError(FarmlinkError):
    """Screen capture failed."""


class ChannelError(FarmlinkError):
    """Ancillary channel (logs, recording) failed."""


class RecordingError(ChannelError):
    """Screen recording could not be started or retrieved."""


class ProtocolError(FarmlinkError):
    """Viewer payload could not be parsed."""


# ── Infrastructure ──────────────────────────────────────────────


class DatabaseError(FarmlinkError):
    """Failed to communicate with PostgreSQL."""
