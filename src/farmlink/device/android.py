"""Android device backend driven through the ADB CLI."""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
import signal

from farmlink.device.adb import AdbClient
from farmlink.device.metrics import best_effort, parse_battery, parse_cpu, parse_memory, parse_network
from farmlink.shared.enums import Platform
from farmlink.shared.exceptions import AdbError, RecordingError
from farmlink.shared.models import BatteryStats, CpuStats, DeviceMetrics, MemoryStats, NetworkStats

logger = logging.getLogger(__name__)

_SIZE_RE = re.compile(r"(\d+)x(\d+)")
_CLIPPER_DATA_RE = re.compile(r'data="(.*)"', re.DOTALL)

_DEFAULT_SIZE = (1080, 1920)
_REMOTE_DOWNLOAD_DIR = "/sdcard/Download"
_REMOTE_RECORDING = "/sdcard/farmlink_recording.mp4"


class AndroidBackend:
    """ADB implementation of the ``DeviceBackend`` protocol.

    Without ``motion_events`` the gesture primitives degrade: a press is a
    tap, a drag is a short swipe and a release is a no-op, because
    ``input`` on older builds has no press-and-hold primitive.
    """

    platform = Platform.ANDROID

    def __init__(
        self,
        device_id: str,
        adb: AdbClient,
        *,
        motion_events: bool = False,
        capture_timeout: float = 5.0,
        stream_bit_rate: int = 4_000_000,
        recording_bit_rate: int = 6_000_000,
        recording_finalize_seconds: float = 1.0,
    ) -> None:
        self.device_id = device_id
        self._adb = adb
        self._motion_events = motion_events
        self._capture_timeout = capture_timeout
        self._stream_bit_rate = stream_bit_rate
        self._recording_bit_rate = recording_bit_rate
        self._recording_finalize_seconds = recording_finalize_seconds

    @property
    def supports_stream(self) -> bool:
        return True

    async def resolve_dimensions(self) -> tuple[int, int]:
        """Parse ``wm size``; an override size wins over the physical one."""
        output = await self._adb.shell(self.device_id, "wm size")
        override = next((line for line in output.splitlines() if line.startswith("Override size")), None)
        match = _SIZE_RE.search(override or output)
        if match is None:
            logger.warning("unparseable wm size for %s (%r), assuming %dx%d", self.device_id, output, *_DEFAULT_SIZE)
            return _DEFAULT_SIZE
        return int(match.group(1)), int(match.group(2))

    async def capture_frame(self) -> bytes:
        return await self._adb.exec_out(self.device_id, "screencap", "-p", timeout=self._capture_timeout)

    async def open_stream(self) -> asyncio.subprocess.Process:
        return await self._adb.spawn(
            self.device_id,
            "exec-out",
            "screenrecord",
            "--output-format=h264",
            "--bit-rate",
            str(self._stream_bit_rate),
            "-",
        )

    # ── gestures ────────────────────────────────────────────────

    async def touch_down(self, x: int, y: int, *, timeout: float) -> None:
        if self._motion_events:
            await self._input(f"motionevent DOWN {x} {y}", timeout=timeout)
        else:
            await self._input(f"tap {x} {y}", timeout=timeout)

    async def touch_drag(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int, *, timeout: float) -> None:
        if self._motion_events:
            await self._input(f"motionevent MOVE {x2} {y2}", timeout=timeout)
        else:
            await self._input(f"swipe {x1} {y1} {x2} {y2} {duration_ms}", timeout=timeout)

    async def touch_up(self, x: int, y: int, *, timeout: float) -> None:
        if self._motion_events:
            await self._input(f"motionevent UP {x} {y}", timeout=timeout)
        # Degraded mode: the tap issued on press already lifted the finger.

    # ── discrete commands ───────────────────────────────────────

    async def tap(self, x: int, y: int) -> None:
        await self._input(f"tap {x} {y}")

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        await self._input(f"swipe {x1} {y1} {x2} {y2} {duration_ms}")

    async def keyevent(self, keycode: int | str) -> None:
        await self._input(f"keyevent {shlex.quote(str(keycode))}")

    async def text(self, text: str) -> None:
        # `input text` treats %s as a space and rejects literal spaces.
        await self._input(f"text {shlex.quote(text.replace(' ', '%s'))}")

    async def get_clipboard(self) -> str:
        output = await self._adb.shell(self.device_id, "am broadcast -a clipper.get")
        match = _CLIPPER_DATA_RE.search(output)
        return match.group(1) if match else ""

    async def set_clipboard(self, text: str) -> None:
        await self._adb.shell(self.device_id, f"am broadcast -a clipper.set -e text {shlex.quote(text)}")
        logger.info("clipboard set for %s", self.device_id)

    async def set_location(self, latitude: float, longitude: float, altitude: float = 0) -> None:
        """Set a mock GPS fix, falling back to legacy properties on old builds."""
        await self._adb.shell(self.device_id, "settings put secure mock_location 1")
        await self._adb.shell(self.device_id, "appops set com.android.shell android:mock_location allow")
        try:
            await self._adb.shell(self.device_id, "cmd location providers add-test-provider gps")
            await self._adb.shell(self.device_id, "cmd location providers set-test-provider-enabled gps true")
            await self._adb.shell(
                self.device_id,
                f"cmd location providers set-test-provider-location gps --location {latitude},{longitude}"
                + (f" --altitude {altitude}" if altitude else ""),
            )
            logger.info("mock location set to %s,%s on %s", latitude, longitude, self.device_id)
            return
        except AdbError as exc:
            logger.warning("cmd location failed on %s, using legacy mock location: %s", self.device_id, exc)

        await self._adb.shell(self.device_id, "am start -a android.location.GPS_ENABLED_CHANGE")
        await self._adb.shell(self.device_id, f"setprop persist.sys.mock.location.latitude {latitude}")
        await self._adb.shell(self.device_id, f"setprop persist.sys.mock.location.longitude {longitude}")
        logger.info("legacy mock location set to %s,%s on %s", latitude, longitude, self.device_id)

    async def push_file(self, local_path: str, filename: str) -> str:
        remote_path = f"{_REMOTE_DOWNLOAD_DIR}/{filename}"
        await self._adb.push(self.device_id, local_path, remote_path)
        return remote_path

    # ── ancillary channels ──────────────────────────────────────

    async def spawn_logs(self) -> asyncio.subprocess.Process:
        return await self._adb.spawn(self.device_id, "logcat", "-v", "time", "*:V")

    async def start_recording(self, max_seconds: int) -> asyncio.subprocess.Process:
        return await self._adb.spawn(
            self.device_id,
            "shell",
            "screenrecord",
            "--bit-rate",
            str(self._recording_bit_rate),
            "--time-limit",
            str(max_seconds),
            _REMOTE_RECORDING,
        )

    async def finish_recording(self, proc: asyncio.subprocess.Process, local_path: str) -> str:
        """Interrupt screenrecord so it finalises the MP4, then pull it."""
        if proc.returncode is None:
            try:
                await self._adb.shell(self.device_id, "pkill -INT screenrecord")
            except AdbError as exc:
                logger.debug("pkill screenrecord on %s: %s", self.device_id, exc)
            proc.send_signal(signal.SIGINT)
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._recording_finalize_seconds * 5)
            except asyncio.TimeoutError:
                proc.kill()
        # screenrecord needs a moment after exit before the file is complete.
        await asyncio.sleep(self._recording_finalize_seconds)

        try:
            await self._adb.pull(self.device_id, _REMOTE_RECORDING, local_path)
        except AdbError as exc:
            raise RecordingError(f"failed to retrieve recording from {self.device_id}: {exc}") from exc
        try:
            await self._adb.shell(self.device_id, f"rm -f {_REMOTE_RECORDING}")
        except AdbError as exc:
            logger.warning("could not remove remote recording on %s: %s", self.device_id, exc)
        return local_path

    async def metrics(self) -> DeviceMetrics:
        battery, memory, cpu, network = await asyncio.gather(
            best_effort(self._battery(), "battery", self.device_id),
            best_effort(self._memory(), "memory", self.device_id),
            best_effort(self._cpu(), "cpu", self.device_id),
            best_effort(self._network(), "network", self.device_id),
        )
        return DeviceMetrics(battery=battery, memory=memory, cpu=cpu, network=network)

    async def close(self) -> None:
        return None

    async def _battery(self) -> BatteryStats:
        return parse_battery(await self._adb.shell(self.device_id, "dumpsys battery"))

    async def _memory(self) -> MemoryStats:
        dumpsys, proc_meminfo = await asyncio.gather(
            self._adb.shell(self.device_id, "dumpsys meminfo | grep 'Total RAM'"),
            self._adb.shell(self.device_id, "cat /proc/meminfo"),
        )
        return parse_memory(dumpsys, proc_meminfo)

    async def _cpu(self) -> CpuStats:
        return parse_cpu(await self._adb.shell(self.device_id, "cat /proc/loadavg"))

    async def _network(self) -> NetworkStats:
        return parse_network(await self._adb.shell(self.device_id, "cat /proc/net/dev"))

    async def _input(self, args: str, *, timeout: float | None = None) -> None:
        await self._adb.shell(self.device_id, f"input {args}", timeout=timeout)
