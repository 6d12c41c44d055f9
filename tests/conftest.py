"""Shared pytest fixtures for the farmlink test suite."""

from __future__ import annotations

import asyncio
import json
import struct
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from farmlink.config import Settings
from farmlink.shared.enums import Platform


def _make_png(width: int, height: int) -> bytes:
    """Smallest byte string png_size() accepts: signature plus IHDR header."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\rIHDR" + struct.pack(">II", width, height) + b"\x08\x06\x00\x00\x00"


class FakeTransport:
    """In-memory stand-in for a Starlette WebSocket."""

    def __init__(self) -> None:
        self.sent: list[str | bytes] = []
        self.closed: tuple[int, str | None] | None = None
        self.block = asyncio.Event()
        self.block.set()

    async def send_text(self, data: str) -> None:
        await self.block.wait()
        self.sent.append(data)

    async def send_bytes(self, data: bytes) -> None:
        await self.block.wait()
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(item) for item in self.sent if isinstance(item, str)]

    @property
    def types(self) -> list[str]:
        return [message["type"] for message in self.messages]


def _make_process(stdout: bytes = b"", *, returncode: int | None = 0) -> MagicMock:
    """A subprocess double whose stdout is a real, pre-fed StreamReader."""
    proc = MagicMock()
    proc.pid = 4242
    proc.returncode = returncode
    reader = asyncio.StreamReader()
    if stdout:
        reader.feed_data(stdout)
    reader.feed_eof()
    err = asyncio.StreamReader()
    err.feed_eof()
    proc.stdout = reader
    proc.stderr = err
    proc.wait = AsyncMock(return_value=returncode if returncode is not None else 0)
    return proc


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Return a Settings instance with fast test timings."""
    return Settings(
        frame_rate=60,
        frame_format="png",
        capture_strategy="still",
        touch_coalesce_ms=16,
        touch_command_timeout_ms=100,
        logs_autostart=False,
        recording_dir=str(tmp_path / "recordings"),
        upload_tmp_dir=str(tmp_path / "tmp"),
        viewer_close_timeout_seconds=0.5,
    )


@pytest.fixture()
def backend() -> AsyncMock:
    """Android-flavoured DeviceBackend double."""
    mock = AsyncMock()
    mock.device_id = "ABC123"
    mock.platform = Platform.ANDROID
    mock.supports_stream = False
    mock.resolve_dimensions.return_value = (1080, 1920)
    mock.capture_frame.return_value = _make_png(1080, 1920)
    mock.get_clipboard.return_value = "copied"
    mock.push_file.return_value = "/sdcard/Download/notes.txt"
    return mock


@pytest.fixture()
def resolver(backend: AsyncMock) -> AsyncMock:
    mock = AsyncMock()
    mock.resolve.return_value = backend
    return mock


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def make_png():
    return _make_png


@pytest.fixture()
def make_process():
    return _make_process


@pytest.fixture()
def make_transport():
    return FakeTransport
