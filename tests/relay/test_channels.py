"""Tests for the log and recording channels."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from farmlink.relay.channels import LogChannel, RecordingChannel
from farmlink.shared.exceptions import ChannelError, RecordingError, UnsupportedOperationError


async def _wait_until_stopped(channel: LogChannel) -> None:
    for _ in range(50):
        if not channel.running:
            return
        await asyncio.sleep(0)


class TestLogChannel:
    async def test_forwards_complete_lines(self, make_process) -> None:
        proc = make_process(b"10-19 10:00:00.000 I/Tag: one\r\n10-19 10:00:00.001 I/Tag: two\n\n   \ntrailing")
        lines: list[str] = []
        channel = LogChannel("ABC123", AsyncMock(return_value=proc), lines.append)

        await channel.start()
        await _wait_until_stopped(channel)

        assert lines == [
            "10-19 10:00:00.000 I/Tag: one",
            "10-19 10:00:00.001 I/Tag: two",
            "trailing",
        ]
        assert channel.lines == 3

    async def test_start_is_idempotent_while_running(self, make_process) -> None:
        spawn = AsyncMock(return_value=make_process(b"x\n"))
        channel = LogChannel("ABC123", spawn, lambda line: None)

        await channel.start()
        await channel.start()

        spawn.assert_awaited_once()
        await channel.stop()

    async def test_stop_terminates_process(self, make_process) -> None:
        proc = make_process(returncode=None)
        channel = LogChannel("ABC123", AsyncMock(return_value=proc), lambda line: None)

        await channel.start()
        await channel.stop()

        proc.terminate.assert_called_once()
        assert channel.running is False

    async def test_close_during_spawn_terminates_late_process(self, make_process) -> None:
        proc = make_process(returncode=None)
        release = asyncio.Event()

        async def spawn() -> object:
            await release.wait()
            return proc

        channel = LogChannel("ABC123", spawn, lambda line: None)
        starting = asyncio.create_task(channel.start())
        await asyncio.sleep(0)

        await channel.close()
        release.set()
        await starting

        proc.terminate.assert_called_once()
        assert channel.running is False

    async def test_start_after_close_rejected(self, make_process) -> None:
        spawn = AsyncMock(return_value=make_process(b"x\n"))
        channel = LogChannel("ABC123", spawn, lambda line: None)
        await channel.close()

        with pytest.raises(ChannelError, match="closed"):
            await channel.start()
        spawn.assert_not_awaited()


class TestRecordingChannel:
    @pytest.fixture
    async def channel(self, backend: AsyncMock, tmp_path: Path, make_process) -> RecordingChannel:
        backend.start_recording.return_value = make_process(returncode=None)

        async def finish(proc: object, local_path: str) -> str:
            return local_path

        backend.finish_recording.side_effect = finish
        return RecordingChannel("emulator-5554", backend, output_dir=str(tmp_path / "rec"), max_seconds=180)

    async def test_start_then_stop(self, channel: RecordingChannel, backend: AsyncMock, tmp_path: Path) -> None:
        await channel.start()
        assert channel.active is True

        path = await channel.stop()

        backend.start_recording.assert_awaited_once_with(180)
        assert Path(path).parent == tmp_path / "rec"
        assert Path(path).name.startswith("recording_emulator-5554_")
        assert path.endswith(".mp4")
        assert channel.active is False

    async def test_double_start_rejected(self, channel: RecordingChannel) -> None:
        await channel.start()

        with pytest.raises(RecordingError, match="already active"):
            await channel.start()
        await channel.close()

    async def test_stop_without_recording(self, channel: RecordingChannel) -> None:
        with pytest.raises(RecordingError, match="no active recording"):
            await channel.stop()

    async def test_unsupported_platform(self, channel: RecordingChannel, backend: AsyncMock) -> None:
        backend.start_recording.side_effect = UnsupportedOperationError("screen recording is not available on iOS")

        with pytest.raises(UnsupportedOperationError):
            await channel.start()
        assert channel.active is False

    async def test_auto_stop_at_cap(self, backend: AsyncMock, tmp_path: Path, make_process) -> None:
        backend.start_recording.return_value = make_process(returncode=None)
        backend.finish_recording.side_effect = lambda proc, local_path: local_path
        saved: list[str] = []
        channel = RecordingChannel(
            "ABC123", backend, output_dir=str(tmp_path), max_seconds=0, on_saved=saved.append
        )

        await channel.start()
        for _ in range(20):
            await asyncio.sleep(0)

        assert len(saved) == 1
        assert channel.active is False

    async def test_close_discards_recording(self, channel: RecordingChannel, backend: AsyncMock) -> None:
        await channel.start()
        await channel.close()

        backend.finish_recording.assert_not_awaited()
        assert channel.active is False

    async def test_close_during_start_terminates_late_process(
        self, backend: AsyncMock, tmp_path: Path, make_process
    ) -> None:
        proc = make_process(returncode=None)
        release = asyncio.Event()

        async def start_recording(max_seconds: int) -> object:
            await release.wait()
            return proc

        backend.start_recording.side_effect = start_recording
        channel = RecordingChannel("ABC123", backend, output_dir=str(tmp_path), max_seconds=180)
        starting = asyncio.create_task(channel.start())
        await asyncio.sleep(0)

        await channel.close()
        release.set()
        with pytest.raises(RecordingError, match="closed"):
            await starting

        proc.terminate.assert_called_once()
        assert channel.active is False
