"""Frozen Pydantic models for the viewer wire protocol and device records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from farmlink.shared.enums import DeviceStatus, Platform


def utc_now() -> datetime:
    """Return timezone-aware UTC timestamps for model defaults."""
    return datetime.now(timezone.utc)


class _Message(BaseModel):
    model_config = {"frozen": True}


# ── Viewer → server ─────────────────────────────────────────────


class TouchDown(_Message):
    type: Literal["touch_down"]
    x: float
    y: float


class TouchMove(_Message):
    type: Literal["touch_move"]
    x: float
    y: float


class TouchUp(_Message):
    type: Literal["touch_up"]
    x: float = 0
    y: float = 0


class Tap(_Message):
    type: Literal["tap"]
    x: float
    y: float


class Swipe(_Message):
    type: Literal["swipe"]
    x1: float
    y1: float
    x2: float
    y2: float
    duration: int = 300


class KeyEvent(_Message):
    type: Literal["keyevent"]
    keycode: int | str


class Text(_Message):
    type: Literal["text"]
    text: str


class StartRecording(_Message):
    type: Literal["start_recording"]


class StopRecording(_Message):
    type: Literal["stop_recording"]


class GetClipboard(_Message):
    type: Literal["get_clipboard"]


class SetClipboard(_Message):
    type: Literal["set_clipboard"]
    text: str = ""


class StartLogs(_Message):
    type: Literal["start_logs", "start_logcat"]


class StopLogs(_Message):
    type: Literal["stop_logs", "stop_logcat"]


class UploadFile(_Message):
    type: Literal["upload_file"]
    filename: str
    data: str


class SetLocation(_Message):
    type: Literal["set_location"]
    latitude: float
    longitude: float
    altitude: float = 0


class GetDeviceInfo(_Message):
    type: Literal["get_device_info"]


GestureCommand = Union[TouchDown, TouchMove, TouchUp]

ViewerCommand = Annotated[
    Union[
        TouchDown,
        TouchMove,
        TouchUp,
        Tap,
        Swipe,
        KeyEvent,
        Text,
        StartRecording,
        StopRecording,
        GetClipboard,
        SetClipboard,
        StartLogs,
        StopLogs,
        UploadFile,
        SetLocation,
        GetDeviceInfo,
    ],
    Field(discriminator="type"),
]


# ── Server → viewer ─────────────────────────────────────────────


class InfoMessage(_Message):
    type: Literal["info"] = "info"
    deviceId: str
    width: int
    height: int
    platform: Platform
    codec: str


class FrameMessage(_Message):
    type: Literal["frame"] = "frame"
    format: str
    data: str


class LogMessage(_Message):
    type: Literal["log"] = "log"
    data: str


class ErrorMessage(_Message):
    type: Literal["error"] = "error"
    message: str


class BatteryStats(_Message):
    level: int | None = None
    temperature: int | None = None
    health: int | None = None


class MemoryStats(_Message):
    used_mb: int | None = None
    total_mb: int | None = None
    percent: int | None = None


class CpuStats(_Message):
    usage: int | None = None


class NetworkStats(_Message):
    download_mb: float | None = None
    upload_mb: float | None = None


class DeviceMetrics(_Message):
    """Snapshot of device health; each field is resolved independently."""

    battery: BatteryStats | None = None
    memory: MemoryStats | None = None
    cpu: CpuStats | None = None
    network: NetworkStats | None = None


class DeviceInfoMessage(_Message):
    type: Literal["device_info"] = "device_info"
    data: DeviceMetrics


class FileUploadedMessage(_Message):
    type: Literal["file_uploaded"] = "file_uploaded"
    filename: str


class LocationSetMessage(_Message):
    type: Literal["location_set"] = "location_set"
    latitude: float
    longitude: float


class ClipboardMessage(_Message):
    type: Literal["clipboard"] = "clipboard"
    text: str


class RecordingStartedMessage(_Message):
    type: Literal["recording_started"] = "recording_started"


class RecordingSavedMessage(_Message):
    type: Literal["recording_saved"] = "recording_saved"
    path: str


ServerMessage = Union[
    InfoMessage,
    FrameMessage,
    LogMessage,
    ErrorMessage,
    DeviceInfoMessage,
    FileUploadedMessage,
    LocationSetMessage,
    ClipboardMessage,
    RecordingStartedMessage,
    RecordingSavedMessage,
]


# ── Device registry ─────────────────────────────────────────────


class DeviceRecord(BaseModel):
    """A device row as written by the registry sync worker."""

    model_config = {"frozen": True}

    id: str
    platform: Platform = Platform.ANDROID
    model: str = "Android Device"
    os_version: str = "unknown"
    status: DeviceStatus = DeviceStatus.FREE
    host_name: str
    updated_at: datetime = Field(default_factory=utc_now)
