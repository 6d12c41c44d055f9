"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide configuration loaded from environment variables."""

    model_config = {"env_prefix": "FARMLINK_", "frozen": True}

    # Relay
    relay_host: str = "0.0.0.0"
    relay_port: int = 8080

    # Capture
    # Strategies:
    # - still: periodic screencap, one complete image per tick
    # - stream: continuous encoded stream from a long-lived subprocess
    # - auto: stream when the device backend supports it, otherwise still
    capture_strategy: str = "still"
    frame_rate: int = 30
    frame_format: str = "jpeg"
    jpeg_quality: int = 3
    capture_timeout_seconds: float = 5.0
    stream_chunk_size: int = 65536
    stream_bit_rate: int = 4_000_000

    # Touch relay
    touch_coalesce_ms: int = 16
    touch_command_timeout_ms: int = 100
    # Android 11+ supports `input motionevent`; older builds degrade to tap/swipe.
    android_motion_events: bool = False

    # Discrete commands
    command_timeout_seconds: float = 15.0

    # Viewers
    viewer_queue_size: int = 8
    viewer_max_buffer_bytes: int = 32 * 1024 * 1024
    viewer_close_timeout_seconds: float = 2.0

    # Ancillary channels
    logs_autostart: bool = True
    recording_max_seconds: int = 180
    recording_bit_rate: int = 6_000_000
    recording_finalize_seconds: float = 1.0
    recording_dir: str = "./data/recordings"
    upload_tmp_dir: str = "./data/tmp"

    # External binaries
    adb_bin: str = "adb"
    ffmpeg_bin: str = "ffmpeg"
    idevice_id_bin: str = "idevice_id"
    idevicescreenshot_bin: str = "idevicescreenshot"
    ideviceinfo_bin: str = "ideviceinfo"
    idevicesyslog_bin: str = "idevicesyslog"
    idevicesetlocation_bin: str = "idevicesetlocation"

    # WebDriverAgent base URL for iOS input. "{udid}" is substituted per device.
    wda_url: str = ""

    # Registry sync (PostgreSQL)
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "farmlink"
    db_password: str = "farmlink"
    db_name: str = "farmlink"
    host_name: str = "android-host-1"
    sync_interval_seconds: int = 30

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def frame_interval(self) -> float:
        """Seconds between still-capture ticks, clamped to 1..60 Hz."""
        rate = min(max(self.frame_rate, 1), 60)
        return 1.0 / rate


def get_settings() -> Settings:
    """Build settings from the environment; patched in tests."""
    return Settings()
