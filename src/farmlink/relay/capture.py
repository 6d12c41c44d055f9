"""Capture backends: periodic still grabs and a continuous encoded stream."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from farmlink.relay.processes import log_stderr, terminate_process

logger = logging.getLogger(__name__)

# Repeated capture failures are logged at most this often per device.
_ERROR_LOG_INTERVAL = 10.0


async def wait_for_next_tick(next_tick: float, interval: float) -> float:
    """Sleep until ``next_tick`` and return the following deadline.

    A scheduler that fell more than one interval behind resynchronises to
    now instead of firing a burst of catch-up ticks.
    """
    now = time.monotonic()
    if now < next_tick:
        await asyncio.sleep(next_tick - now)
        return next_tick + interval
    if now - next_tick > interval:
        return now + interval
    return next_tick + interval


class PeriodicCapture:
    """Strategy A: one still capture per tick, never more than one in flight.

    A tick is skipped, not queued, while the previous capture is still
    running or while nobody is watching. Each successful capture is a
    complete image handed to ``publish``; a failed one is logged and
    dropped, and the next tick is the retry.
    """

    def __init__(
        self,
        device_id: str,
        grab: Callable[[], Awaitable[bytes]],
        publish: Callable[[bytes], None],
        has_viewers: Callable[[], bool],
        *,
        interval: float,
    ) -> None:
        self.device_id = device_id
        self._grab = grab
        self._publish = publish
        self._has_viewers = has_viewers
        self._interval = interval
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: asyncio.Task[None] | None = None
        self._stopped = False
        self._last_error_log = 0.0
        self._suppressed_errors = 0
        self.captured = 0
        self.skipped = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def start(self) -> None:
        if self._loop_task is None and not self._stopped:
            self._loop_task = asyncio.create_task(self._run(), name=f"capture-{self.device_id}")
            logger.info("still capture started for %s every %.0f ms", self.device_id, self._interval * 1000)

    def tick(self) -> bool:
        """Launch one capture unless one is in flight or nobody watches.

        Returns:
            True if a capture was launched, False if the tick was skipped.
        """
        if self._stopped or self.in_flight or not self._has_viewers():
            self.skipped += 1
            return False
        self._in_flight = asyncio.create_task(self._capture_once())
        return True

    async def stop(self) -> None:
        """Cancel the scheduler; an in-flight capture completes unseen."""
        self._stopped = True
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        logger.info(
            "still capture stopped for %s (captured=%d skipped=%d failures=%d)",
            self.device_id,
            self.captured,
            self.skipped,
            self.failures,
        )

    async def _run(self) -> None:
        next_tick = time.monotonic() + self._interval
        while not self._stopped:
            next_tick = await wait_for_next_tick(next_tick, self._interval)
            self.tick()

    async def _capture_once(self) -> None:
        try:
            frame = await self._grab()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._report_failure(exc)
            return
        if self._stopped or not frame:
            return
        self.captured += 1
        self._publish(frame)

    def _report_failure(self, exc: Exception) -> None:
        self.failures += 1
        now = time.monotonic()
        if now - self._last_error_log < _ERROR_LOG_INTERVAL:
            self._suppressed_errors += 1
            return
        if self._suppressed_errors:
            logger.warning(
                "frame capture failed for %s: %s (%d similar suppressed)",
                self.device_id,
                exc,
                self._suppressed_errors,
            )
        else:
            logger.warning("frame capture failed for %s: %s", self.device_id, exc)
        self._last_error_log = now
        self._suppressed_errors = 0


class StreamCapture:
    """Strategy B: forward a subprocess's encoded stdout chunk by chunk.

    The subprocess owns the device's screen-mirroring session, so its exit
    (or failure to spawn) is fatal for the device session: ``on_fatal`` is
    awaited with a reason unless the capture was stopped deliberately.
    """

    def __init__(
        self,
        device_id: str,
        open_stream: Callable[[], Awaitable[asyncio.subprocess.Process]],
        publish: Callable[[bytes], None],
        on_fatal: Callable[[str], Awaitable[None]],
        *,
        chunk_size: int = 65536,
    ) -> None:
        self.device_id = device_id
        self._open_stream = open_stream
        self._publish = publish
        self._on_fatal = on_fatal
        self._chunk_size = chunk_size
        self._proc: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task[None] | None = None
        self._stderr: asyncio.Task[None] | None = None
        self._stopped = False
        self.bytes_forwarded = 0

    @property
    def running(self) -> bool:
        return self._reader is not None and not self._reader.done()

    async def start(self) -> None:
        """Spawn the encoder subprocess and begin forwarding.

        Raises:
            DeviceError: If the subprocess cannot be spawned.
        """
        proc = await self._open_stream()
        if self._stopped:
            logger.info("stream capture for %s stopped during spawn", self.device_id)
            await terminate_process(proc)
            return
        self._proc = proc
        self._reader = asyncio.create_task(self._read_loop(proc), name=f"stream-{self.device_id}")
        self._stderr = asyncio.create_task(log_stderr(self._proc.stderr, f"stream {self.device_id}"))
        logger.info("stream capture started for %s (pid=%s)", self.device_id, self._proc.pid)

    async def stop(self) -> None:
        self._stopped = True
        if self._proc is not None:
            await terminate_process(self._proc)
        current = asyncio.current_task()
        for task in (self._reader, self._stderr):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("stream capture stopped for %s (%d bytes forwarded)", self.device_id, self.bytes_forwarded)

    async def _read_loop(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(self._chunk_size)
            if not chunk:
                break
            self.bytes_forwarded += len(chunk)
            self._publish(chunk)
        returncode = await proc.wait()
        if not self._stopped:
            logger.error("stream capture for %s exited with code %s", self.device_id, returncode)
            await self._on_fatal(f"capture process exited with code {returncode}")
