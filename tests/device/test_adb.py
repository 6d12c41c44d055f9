"""Tests for AdbClient."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from farmlink.device.adb import AdbClient
from farmlink.shared.exceptions import AdbError


@pytest.fixture
def adb() -> AdbClient:
    return AdbClient(adb_bin="adb", timeout=5)


def _proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    mock_proc = AsyncMock()
    mock_proc.communicate.return_value = (stdout, stderr)
    mock_proc.returncode = returncode
    return mock_proc


class TestDevices:
    async def test_lists_only_ready_devices(self, adb: AdbClient) -> None:
        output = b"List of devices attached\nABC123\tdevice\nDEF456\toffline\nGHI789\tunauthorized\nemulator-5554\tdevice\n"

        with patch("asyncio.create_subprocess_exec", return_value=_proc(output)):
            serials = await adb.devices()

        assert serials == ["ABC123", "emulator-5554"]

    async def test_long_listing_collects_properties(self, adb: AdbClient) -> None:
        output = (
            b"List of devices attached\n"
            b"ABC123  device usb:1-1 product:sunfish model:Pixel_4a device:sunfish transport_id:3\n"
        )

        with patch("asyncio.create_subprocess_exec", return_value=_proc(output)) as exec_mock:
            devices = await adb.devices_long()

        assert exec_mock.call_args.args == ("adb", "devices", "-l")
        assert devices == [
            (
                "ABC123",
                {"usb": "1-1", "product": "sunfish", "model": "Pixel_4a", "device": "sunfish", "transport_id": "3"},
            )
        ]

    async def test_failure_raises(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", b"daemon not running", 1)):
            with pytest.raises(AdbError, match="adb devices failed"):
                await adb.devices()


class TestShell:
    async def test_shell_success(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"Physical size: 1080x1920\n")) as exec_mock:
            result = await adb.shell("ABC123", "wm size")

        assert result == "Physical size: 1080x1920"
        assert exec_mock.call_args.args == ("adb", "-s", "ABC123", "shell", "wm size")

    async def test_shell_failure(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", b"error: device offline", 1)):
            with pytest.raises(AdbError, match="shell failed on ABC123"):
                await adb.shell("ABC123", "ls")

    async def test_exec_out_returns_raw_bytes(self, adb: AdbClient) -> None:
        png = b"\x89PNG\r\n\x1a\n\x00\x01"
        with patch("asyncio.create_subprocess_exec", return_value=_proc(png)):
            data = await adb.exec_out("ABC123", "screencap", "-p")

        assert data == png

    async def test_getprop_quotes_name(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"Pixel 4a\n")) as exec_mock:
            model = await adb.getprop("ABC123", "ro.product.model")

        assert model == "Pixel 4a"
        assert exec_mock.call_args.args[-1] == "getprop ro.product.model"

    async def test_timeout_kills_process(self, adb: AdbClient) -> None:
        mock_proc = _proc()
        mock_proc.communicate.side_effect = asyncio.TimeoutError
        mock_proc.returncode = None
        mock_proc.kill = MagicMock()

        with patch("asyncio.create_subprocess_exec", return_value=mock_proc):
            with pytest.raises(AdbError, match="timed out"):
                await adb.shell("ABC123", "sleep 60")

        mock_proc.kill.assert_called_once()

    async def test_binary_not_found(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("adb")):
            with pytest.raises(AdbError, match="not found"):
                await adb.shell("ABC123", "ls")

    async def test_binary_not_executable(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(AdbError, match="cannot run adb"):
                await adb.shell("ABC123", "ls")


class TestTransfer:
    async def test_push_failure(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"", b"remote couldn't create file", 1)):
            with pytest.raises(AdbError, match="push failed"):
                await adb.push("ABC123", "/tmp/a.txt", "/sdcard/Download/a.txt")

    async def test_pull_success(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(b"1 file pulled")) as exec_mock:
            await adb.pull("ABC123", "/sdcard/rec.mp4", "/tmp/rec.mp4")

        assert exec_mock.call_args.args == ("adb", "-s", "ABC123", "pull", "/sdcard/rec.mp4", "/tmp/rec.mp4")

    async def test_spawn_missing_binary(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("adb")):
            with pytest.raises(AdbError, match="not found"):
                await adb.spawn("ABC123", "logcat")

    async def test_spawn_os_error(self, adb: AdbClient) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=OSError(24, "Too many open files")):
            with pytest.raises(AdbError, match="Too many open files"):
                await adb.spawn("ABC123", "logcat")
