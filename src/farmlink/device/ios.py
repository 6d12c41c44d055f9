"""iOS device backend: libimobiledevice CLI plus WebDriverAgent for input."""

from __future__ import annotations

import asyncio
import base64
import logging
import os
import tempfile
from typing import Any

import aiofiles  # type: ignore[import-untyped]
import httpx

from farmlink.device.imaging import png_size
from farmlink.device.metrics import best_effort
from farmlink.shared.enums import Platform
from farmlink.shared.exceptions import CaptureError, IosDeviceError, UnsupportedOperationError
from farmlink.shared.models import BatteryStats, DeviceMetrics

logger = logging.getLogger(__name__)

# Android HOME keycode; the only hardware key WebDriverAgent exposes.
_HOME_KEYS = {"3", "home", "KEYCODE_HOME"}


class IMobileDeviceClient:
    """Async wrapper over the libimobiledevice command line tools."""

    def __init__(
        self,
        *,
        idevice_id_bin: str = "idevice_id",
        screenshot_bin: str = "idevicescreenshot",
        info_bin: str = "ideviceinfo",
        syslog_bin: str = "idevicesyslog",
        setlocation_bin: str = "idevicesetlocation",
        timeout: float = 15,
    ) -> None:
        self._idevice_id_bin = idevice_id_bin
        self._screenshot_bin = screenshot_bin
        self._info_bin = info_bin
        self._syslog_bin = syslog_bin
        self._setlocation_bin = setlocation_bin
        self._timeout = timeout

    async def devices(self) -> list[str]:
        """Return UDIDs of USB-tethered devices."""
        stdout = await self._run(self._idevice_id_bin, "-l")
        return [line.strip() for line in stdout.decode(errors="replace").splitlines() if line.strip()]

    async def screenshot(self, udid: str, *, timeout: float | None = None) -> bytes:
        """Capture one PNG screenshot through a temporary file."""
        fd, path = tempfile.mkstemp(prefix="farmlink-", suffix=".png")
        os.close(fd)
        try:
            await self._run(self._screenshot_bin, "-u", udid, path, timeout=timeout)
            try:
                async with aiofiles.open(path, "rb") as f:
                    return await f.read()
            except OSError as exc:
                raise IosDeviceError(f"cannot read screenshot for {udid}: {exc}") from exc
        finally:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass

    async def info(self, udid: str, *, domain: str | None = None, key: str | None = None) -> str:
        args = ["-u", udid]
        if domain:
            args += ["-q", domain]
        if key:
            args += ["-k", key]
        stdout = await self._run(self._info_bin, *args)
        return stdout.decode(errors="replace").strip()

    async def set_location(self, udid: str, latitude: float, longitude: float) -> None:
        await self._run(self._setlocation_bin, "-u", udid, "--", str(latitude), str(longitude))

    async def spawn_syslog(self, udid: str) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self._syslog_bin,
                "-u",
                udid,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise IosDeviceError(f"binary not found: {self._syslog_bin}") from exc
        except OSError as exc:
            raise IosDeviceError(f"cannot run {self._syslog_bin}: {exc}") from exc

    async def _run(self, *cmd: str, timeout: float | None = None) -> bytes:
        limit = self._timeout if timeout is None else timeout
        proc: asyncio.subprocess.Process | None = None
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError as exc:
            if proc is not None and proc.returncode is None:
                proc.kill()
            raise IosDeviceError(f"command timed out after {limit}s: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise IosDeviceError(f"binary not found: {cmd[0]}") from exc
        except OSError as exc:
            raise IosDeviceError(f"cannot run {cmd[0]}: {exc}") from exc

        if proc.returncode:
            raise IosDeviceError(
                f"{cmd[0]} failed (rc={proc.returncode}): {(stderr or b'').decode(errors='replace').strip()}"
            )
        return stdout or b""


class WdaClient:
    """Minimal WebDriverAgent HTTP client for input and pasteboard access."""

    def __init__(self, base_url: str, *, timeout: float = 15, client: httpx.AsyncClient | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._session_id: str | None = None

    async def tap(self, x: int, y: int) -> None:
        await self._session_post("wda/tap", {"x": x, "y": y})

    async def drag(self, x1: int, y1: int, x2: int, y2: int, duration_s: float) -> None:
        await self._session_post(
            "wda/dragfromtoforduration",
            {"fromX": x1, "fromY": y1, "toX": x2, "toY": y2, "duration": duration_s},
        )

    async def home(self) -> None:
        await self._post(f"{self._base_url}/wda/homescreen", {})

    async def type_text(self, text: str) -> None:
        await self._session_post("wda/keys", {"value": list(text)})

    async def get_pasteboard(self) -> str:
        value = await self._session_post("wda/getPasteboard", {"contentType": "plaintext"})
        if not isinstance(value, str) or not value:
            return ""
        return base64.b64decode(value).decode(errors="replace")

    async def set_pasteboard(self, text: str) -> None:
        await self._session_post(
            "wda/setPasteboard",
            {"content": base64.b64encode(text.encode()).decode(), "contentType": "plaintext"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _ensure_session(self) -> str:
        if self._session_id is None:
            body = await self._request(f"{self._base_url}/session", {"capabilities": {}})
            session_id = body.get("sessionId") or (body.get("value") or {}).get("sessionId")
            if not isinstance(session_id, str) or not session_id:
                raise IosDeviceError(f"WebDriverAgent returned no session id: {body}")
            self._session_id = session_id
            logger.info("WebDriverAgent session %s opened at %s", session_id, self._base_url)
        return self._session_id

    async def _session_post(self, path: str, payload: dict[str, Any]) -> Any:
        session_id = await self._ensure_session()
        return await self._post(f"{self._base_url}/session/{session_id}/{path}", payload)

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        body = await self._request(url, payload)
        return body.get("value")

    async def _request(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            raise IosDeviceError(f"WebDriverAgent request failed ({url}): {exc}") from exc
        except ValueError as exc:
            raise IosDeviceError(f"WebDriverAgent returned invalid JSON ({url})") from exc
        if not isinstance(body, dict):
            raise IosDeviceError(f"WebDriverAgent returned unexpected body ({url})")
        return body


class IosBackend:
    """Tethered-iOS implementation of the ``DeviceBackend`` protocol.

    WebDriverAgent has no press-and-hold primitive, so gestures degrade to
    a tap on press and a timed drag on move; release is a no-op. Without a
    configured WebDriverAgent every input command is unsupported.
    """

    platform = Platform.IOS

    def __init__(
        self,
        device_id: str,
        cli: IMobileDeviceClient,
        *,
        wda: WdaClient | None = None,
        capture_timeout: float = 5.0,
    ) -> None:
        self.device_id = device_id
        self._cli = cli
        self._wda = wda
        self._capture_timeout = capture_timeout

    @property
    def supports_stream(self) -> bool:
        return False

    async def resolve_dimensions(self) -> tuple[int, int]:
        return png_size(await self.capture_frame())

    async def capture_frame(self) -> bytes:
        data = await self._cli.screenshot(self.device_id, timeout=self._capture_timeout)
        if not data:
            raise CaptureError(f"empty screenshot from {self.device_id}")
        return data

    async def open_stream(self) -> asyncio.subprocess.Process:
        raise UnsupportedOperationError("continuous stream capture is not available on iOS")

    async def touch_down(self, x: int, y: int, *, timeout: float) -> None:
        await asyncio.wait_for(self._input().tap(x, y), timeout=timeout)

    async def touch_drag(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int, *, timeout: float) -> None:
        await asyncio.wait_for(self._input().drag(x1, y1, x2, y2, duration_ms / 1000), timeout=timeout)

    async def touch_up(self, x: int, y: int, *, timeout: float) -> None:
        return None

    async def tap(self, x: int, y: int) -> None:
        await self._input().tap(x, y)

    async def swipe(self, x1: int, y1: int, x2: int, y2: int, duration_ms: int) -> None:
        await self._input().drag(x1, y1, x2, y2, duration_ms / 1000)

    async def keyevent(self, keycode: int | str) -> None:
        if str(keycode) not in _HOME_KEYS:
            raise UnsupportedOperationError(f"keycode {keycode} has no iOS equivalent")
        await self._input().home()

    async def text(self, text: str) -> None:
        await self._input().type_text(text)

    async def get_clipboard(self) -> str:
        return await self._input().get_pasteboard()

    async def set_clipboard(self, text: str) -> None:
        await self._input().set_pasteboard(text)

    async def set_location(self, latitude: float, longitude: float, altitude: float = 0) -> None:
        await self._cli.set_location(self.device_id, latitude, longitude)

    async def push_file(self, local_path: str, filename: str) -> str:
        raise UnsupportedOperationError("file upload is not available on iOS")

    async def spawn_logs(self) -> asyncio.subprocess.Process:
        return await self._cli.spawn_syslog(self.device_id)

    async def start_recording(self, max_seconds: int) -> asyncio.subprocess.Process:
        raise UnsupportedOperationError("screen recording is not available on iOS")

    async def finish_recording(self, proc: asyncio.subprocess.Process, local_path: str) -> str:
        raise UnsupportedOperationError("screen recording is not available on iOS")

    async def metrics(self) -> DeviceMetrics:
        battery = await best_effort(self._battery(), "battery", self.device_id)
        return DeviceMetrics(battery=battery)

    async def close(self) -> None:
        if self._wda is not None:
            await self._wda.aclose()

    async def _battery(self) -> BatteryStats:
        raw = await self._cli.info(self.device_id, domain="com.apple.mobile.battery", key="BatteryCurrentCapacity")
        return BatteryStats(level=int(raw))

    def _input(self) -> WdaClient:
        if self._wda is None:
            raise UnsupportedOperationError(f"no WebDriverAgent configured for {self.device_id}")
        return self._wda
