"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, IntEnum, unique


@unique
class Platform(str, Enum):
    """Device platform families the relay can drive."""

    ANDROID = "android"
    IOS = "ios"


@unique
class SessionState(str, Enum):
    """Lifecycle states for a device session."""

    STARTING = "starting"
    ACTIVE = "active"
    STOPPING = "stopping"
    CLOSED = "closed"


@unique
class DeviceStatus(str, Enum):
    """Availability states written by the registry sync worker."""

    FREE = "free"
    BUSY = "busy"
    OFFLINE = "offline"


@unique
class CloseCode(IntEnum):
    """Websocket close codes sent to viewers."""

    NORMAL = 1000
    DEVICE_ID_REQUIRED = 4000
    STREAM_INIT_FAILED = 4001
    CAPTURE_FAILED = 4002
    VIEWER_TOO_SLOW = 4003
