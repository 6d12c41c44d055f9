"""Ancillary per-device channels: log streaming and screen recording.

Each channel is independent of video capture; a failure here degrades
only the channel itself.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from farmlink.device.interfaces import DeviceBackend
from farmlink.relay.processes import log_stderr, terminate_process
from farmlink.shared.exceptions import ChannelError, RecordingError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class LogChannel:
    """Forward a device log subprocess line by line.

    Partial lines stay buffered until their terminator arrives; a trailing
    unterminated line is forwarded when the subprocess exits.
    """

    def __init__(
        self,
        device_id: str,
        spawn: Callable[[], Awaitable[asyncio.subprocess.Process]],
        on_line: Callable[[str], None],
    ) -> None:
        self.device_id = device_id
        self._spawn = spawn
        self._on_line = on_line
        self._proc: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._stderr: asyncio.Task[None] | None = None
        self._closed = False
        self.lines = 0

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    async def start(self) -> None:
        """Spawn the log subprocess. No-op if already streaming.

        Raises:
            ChannelError: If the channel was closed.
            DeviceError: If the subprocess cannot be spawned.
        """
        if self._closed:
            raise ChannelError(f"log channel for {self.device_id} is closed")
        if self.running:
            return
        proc = await self._spawn()
        if self._closed:
            logger.info("log channel for %s closed during spawn", self.device_id)
            await terminate_process(proc)
            return
        self._proc = proc
        self._reader = asyncio.create_task(self._read_loop(proc), name=f"logs-{self.device_id}")
        self._stderr = asyncio.create_task(log_stderr(proc.stderr, f"logs {self.device_id}"))
        logger.info("log streaming started for %s", self.device_id)

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None:
            await terminate_process(proc)
        for task in (self._reader, self._stderr):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._reader = self._stderr = None
        if proc is not None:
            logger.info("log streaming stopped for %s (%d lines)", self.device_id, self.lines)

    async def close(self) -> None:
        """Stop streaming for good; a spawn still in progress is terminated on arrival."""
        self._closed = True
        await self.stop()

    async def _read_loop(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            try:
                raw = await proc.stdout.readline()
            except ValueError:
                logger.debug("oversized log line from %s skipped", self.device_id)
                continue
            if not raw:
                break
            line = raw.decode(errors="replace").rstrip("\r\n")
            if line.strip():
                self.lines += 1
                self._on_line(line)
        returncode = await proc.wait()
        logger.info("log stream for %s exited with code %s", self.device_id, returncode)


class RecordingChannel:
    """Bounded-duration screen recording retrieved as a local file.

    The recording auto-stops at ``max_seconds`` (the platform cap); the
    retrieved path is then reported through ``on_saved``.
    """

    def __init__(
        self,
        device_id: str,
        backend: DeviceBackend,
        *,
        output_dir: str,
        max_seconds: int = 180,
        on_saved: Callable[[str], None] | None = None,
    ) -> None:
        self.device_id = device_id
        self._backend = backend
        self._output_dir = output_dir
        self._max_seconds = max_seconds
        self._on_saved = on_saved
        self._proc: asyncio.subprocess.Process | None = None
        self._started_at: float | None = None
        self._auto_stop: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def active(self) -> bool:
        return self._proc is not None

    async def start(self) -> None:
        """Begin recording.

        Raises:
            RecordingError: If a recording is already active.
            DeviceError: If the platform cannot record.
        """
        if self._closed:
            raise RecordingError(f"recording channel for {self.device_id} is closed")
        if self._proc is not None:
            raise RecordingError(f"recording already active for {self.device_id}")
        proc = await self._backend.start_recording(self._max_seconds)
        if self._closed:
            await terminate_process(proc)
            raise RecordingError(f"session for {self.device_id} closed while recording started")
        self._proc = proc
        self._started_at = time.monotonic()
        self._auto_stop = asyncio.create_task(self._stop_at_cap(), name=f"recording-cap-{self.device_id}")
        logger.info("recording started for %s (cap %ds)", self.device_id, self._max_seconds)

    async def stop(self) -> str:
        """Finish the recording and return the local artifact path.

        Raises:
            RecordingError: If nothing is recording or retrieval fails.
        """
        proc, self._proc = self._proc, None
        if proc is None:
            raise RecordingError(f"no active recording for {self.device_id}")
        self._cancel_auto_stop()
        Path(self._output_dir).mkdir(parents=True, exist_ok=True)
        safe_id = _UNSAFE_CHARS.sub("_", self.device_id)
        local_path = str(Path(self._output_dir) / f"recording_{safe_id}_{int(time.time() * 1000)}.mp4")
        path = await self._backend.finish_recording(proc, local_path)
        elapsed = time.monotonic() - (self._started_at or time.monotonic())
        logger.info("recording for %s saved to %s (%.0fs)", self.device_id, path, elapsed)
        return path

    async def close(self) -> None:
        """Terminate an active recording without retrieving it."""
        self._closed = True
        proc, self._proc = self._proc, None
        self._cancel_auto_stop()
        if proc is not None:
            await terminate_process(proc)
            logger.info("recording for %s discarded on session stop", self.device_id)

    async def _stop_at_cap(self) -> None:
        await asyncio.sleep(self._max_seconds)
        self._auto_stop = None
        if self._proc is None:
            return
        try:
            path = await self.stop()
        except Exception as exc:
            logger.warning("auto-stop of recording failed for %s: %s", self.device_id, exc)
            return
        if self._on_saved is not None:
            self._on_saved(path)

    def _cancel_auto_stop(self) -> None:
        task, self._auto_stop = self._auto_stop, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
