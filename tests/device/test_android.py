"""Tests for AndroidBackend command mapping."""

from __future__ import annotations

import signal
from unittest.mock import AsyncMock, MagicMock

import pytest

from farmlink.device.adb import AdbClient
from farmlink.device.android import AndroidBackend
from farmlink.shared.exceptions import AdbError, RecordingError


@pytest.fixture
def adb() -> AsyncMock:
    return AsyncMock(spec=AdbClient)


@pytest.fixture
def android(adb: AsyncMock) -> AndroidBackend:
    return AndroidBackend("ABC123", adb, recording_finalize_seconds=0)


def _shell_commands(adb: AsyncMock) -> list[str]:
    return [call.args[1] for call in adb.shell.await_args_list]


class TestDimensions:
    async def test_physical_size(self, android: AndroidBackend, adb: AsyncMock) -> None:
        adb.shell.return_value = "Physical size: 1080x1920"
        assert await android.resolve_dimensions() == (1080, 1920)

    async def test_override_wins(self, android: AndroidBackend, adb: AsyncMock) -> None:
        adb.shell.return_value = "Physical size: 1440x2960\nOverride size: 1080x2220"
        assert await android.resolve_dimensions() == (1080, 2220)

    async def test_unparseable_falls_back(self, android: AndroidBackend, adb: AsyncMock) -> None:
        adb.shell.return_value = "cmd: Can't find service: window"
        assert await android.resolve_dimensions() == (1080, 1920)


class TestGestures:
    async def test_degraded_mode(self, android: AndroidBackend, adb: AsyncMock) -> None:
        await android.touch_down(100, 200, timeout=0.1)
        await android.touch_drag(100, 200, 130, 215, 16, timeout=0.1)
        await android.touch_up(130, 215, timeout=0.1)

        assert _shell_commands(adb) == ["input tap 100 200", "input swipe 100 200 130 215 16"]
        assert adb.shell.await_args_list[0].kwargs == {"timeout": 0.1}

    async def test_motion_events(self, adb: AsyncMock) -> None:
        android = AndroidBackend("ABC123", adb, motion_events=True)

        await android.touch_down(100, 200, timeout=0.1)
        await android.touch_drag(100, 200, 130, 215, 16, timeout=0.1)
        await android.touch_up(130, 215, timeout=0.1)

        assert _shell_commands(adb) == [
            "input motionevent DOWN 100 200",
            "input motionevent MOVE 130 215",
            "input motionevent UP 130 215",
        ]


class TestDiscreteCommands:
    async def test_text_escapes_spaces(self, android: AndroidBackend, adb: AsyncMock) -> None:
        await android.text("hello world")
        assert _shell_commands(adb) == ["input text hello%sworld"]

    async def test_text_quotes_shell_metacharacters(self, android: AndroidBackend, adb: AsyncMock) -> None:
        await android.text("a;b")
        assert _shell_commands(adb) == ["input text 'a;b'"]

    async def test_keyevent(self, android: AndroidBackend, adb: AsyncMock) -> None:
        await android.keyevent(3)
        assert _shell_commands(adb) == ["input keyevent 3"]

    async def test_get_clipboard_parses_broadcast(self, android: AndroidBackend, adb: AsyncMock) -> None:
        adb.shell.return_value = 'Broadcasting: Intent { act=clipper.get }\nBroadcast completed: result=-1, data="hi there"'
        assert await android.get_clipboard() == "hi there"

    async def test_get_clipboard_empty(self, android: AndroidBackend, adb: AsyncMock) -> None:
        adb.shell.return_value = "Broadcast completed: result=0"
        assert await android.get_clipboard() == ""

    async def test_push_file_targets_downloads(self, android: AndroidBackend, adb: AsyncMock) -> None:
        remote = await android.push_file("/tmp/x_notes.txt", "notes.txt")

        assert remote == "/sdcard/Download/notes.txt"
        adb.push.assert_awaited_once_with("ABC123", "/tmp/x_notes.txt", "/sdcard/Download/notes.txt")


class TestLocation:
    async def test_cmd_location(self, android: AndroidBackend, adb: AsyncMock) -> None:
        await android.set_location(52.5, 13.4)

        commands = _shell_commands(adb)
        assert commands[-1] == "cmd location providers set-test-provider-location gps --location 52.5,13.4"
        assert not any(command.startswith("setprop") for command in commands)

    async def test_legacy_fallback(self, android: AndroidBackend, adb: AsyncMock) -> None:
        async def shell(serial: str, cmd: str, **kwargs: object) -> str:
            if cmd.startswith("cmd location"):
                raise AdbError("Unknown command: location")
            return ""

        adb.shell.side_effect = shell

        await android.set_location(52.5, 13.4, 30)

        commands = _shell_commands(adb)
        assert "setprop persist.sys.mock.location.latitude 52.5" in commands
        assert "setprop persist.sys.mock.location.longitude 13.4" in commands


class TestRecording:
    async def test_finish_interrupts_pulls_and_removes(self, android: AndroidBackend, adb: AsyncMock) -> None:
        proc = MagicMock()
        proc.returncode = None
        proc.wait = AsyncMock(return_value=0)

        path = await android.finish_recording(proc, "/tmp/rec.mp4")

        assert path == "/tmp/rec.mp4"
        proc.send_signal.assert_called_once_with(signal.SIGINT)
        adb.pull.assert_awaited_once_with("ABC123", "/sdcard/farmlink_recording.mp4", "/tmp/rec.mp4")
        assert _shell_commands(adb) == ["pkill -INT screenrecord", "rm -f /sdcard/farmlink_recording.mp4"]

    async def test_failed_pull_raises(self, android: AndroidBackend, adb: AsyncMock) -> None:
        proc = MagicMock()
        proc.returncode = 0
        adb.pull.side_effect = AdbError("remote object does not exist")

        with pytest.raises(RecordingError, match="failed to retrieve"):
            await android.finish_recording(proc, "/tmp/rec.mp4")


class TestMetrics:
    async def test_partial_snapshot(self, android: AndroidBackend, adb: AsyncMock) -> None:
        async def shell(serial: str, cmd: str, **kwargs: object) -> str:
            if cmd == "dumpsys battery":
                return "level: 55\ntemperature: 250\nhealth: 2"
            if cmd == "cat /proc/loadavg":
                return "2.00 1.00 0.50 1/200 99"
            raise AdbError("permission denied")

        adb.shell.side_effect = shell

        snapshot = await android.metrics()

        assert snapshot.battery is not None and snapshot.battery.level == 55
        assert snapshot.cpu is not None and snapshot.cpu.usage == 50
        assert snapshot.memory is None
        assert snapshot.network is None
