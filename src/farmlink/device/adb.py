"""Async ADB CLI client shared by all Android device backends."""

from __future__ import annotations

import asyncio
import logging
import shlex

from farmlink.shared.exceptions import AdbError

logger = logging.getLogger(__name__)


class AdbClient:
    """Thin wrapper over the ``adb`` CLI through async subprocess calls.

    One instance serves every device on the host; each call names its
    target serial explicitly.
    """

    def __init__(self, *, adb_bin: str = "adb", timeout: float = 30) -> None:
        self._adb_bin = adb_bin
        self._timeout = timeout

    @property
    def adb_bin(self) -> str:
        return self._adb_bin

    async def devices(self) -> list[str]:
        """Return serials of attached devices in the ``device`` state."""
        stdout, stderr, rc = await self._run_text("devices")
        if rc != 0:
            raise AdbError(f"adb devices failed (rc={rc}): {stderr}")
        return [serial for serial, _props in _parse_device_lines(stdout)]

    async def devices_long(self) -> list[tuple[str, dict[str, str]]]:
        """Return ``(serial, properties)`` pairs from ``adb devices -l``."""
        stdout, stderr, rc = await self._run_text("devices", "-l")
        if rc != 0:
            raise AdbError(f"adb devices -l failed (rc={rc}): {stderr}")
        return _parse_device_lines(stdout)

    async def shell(self, serial: str, cmd: str, *, timeout: float | None = None) -> str:
        """Execute a shell command on the device.

        Args:
            serial: Target device serial.
            cmd: Shell command line, already quoted for the device shell.
            timeout: Override for the client default.

        Returns:
            Command output (stdout).

        Raises:
            AdbError: If the command fails or times out.
        """
        stdout, stderr, rc = await self._run_text("-s", serial, "shell", cmd, timeout=timeout)
        if rc != 0:
            raise AdbError(f"ADB shell failed on {serial} (rc={rc}): {stderr or stdout}")
        return stdout

    async def exec_out(self, serial: str, *args: str, timeout: float | None = None) -> bytes:
        """Run a command through ``exec-out`` and return raw stdout bytes."""
        stdout, stderr, rc = await self._run("-s", serial, "exec-out", *args, timeout=timeout)
        if rc != 0:
            raise AdbError(f"ADB exec-out failed on {serial} (rc={rc}): {stderr.decode(errors='replace')}")
        return stdout

    async def push(self, serial: str, local: str, remote: str) -> None:
        """Push a local file to the device."""
        _stdout, stderr, rc = await self._run_text("-s", serial, "push", local, remote)
        if rc != 0:
            raise AdbError(f"ADB push failed: {stderr}")
        logger.info("pushed %s → %s on %s", local, remote, serial)

    async def pull(self, serial: str, remote: str, local: str) -> None:
        """Pull a device file to the local filesystem."""
        _stdout, stderr, rc = await self._run_text("-s", serial, "pull", remote, local)
        if rc != 0:
            raise AdbError(f"ADB pull failed: {stderr}")
        logger.info("pulled %s → %s from %s", remote, local, serial)

    async def getprop(self, serial: str, name: str) -> str:
        return await self.shell(serial, f"getprop {shlex.quote(name)}")

    async def spawn(self, serial: str, *args: str) -> asyncio.subprocess.Process:
        """Start a long-lived adb subprocess with piped stdout/stderr.

        Raises:
            AdbError: If the adb binary is missing.
        """
        cmd = [self._adb_bin, "-s", serial, *args]
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise AdbError(f"adb binary not found: {self._adb_bin}") from exc
        except OSError as exc:
            raise AdbError(f"cannot run {self._adb_bin}: {exc}") from exc

    async def _run_text(self, *args: str, timeout: float | None = None) -> tuple[str, str, int]:
        stdout_b, stderr_b, rc = await self._run(*args, timeout=timeout)
        return (
            stdout_b.decode(errors="replace").strip(),
            stderr_b.decode(errors="replace").strip(),
            rc,
        )

    async def _run(self, *args: str, timeout: float | None = None) -> tuple[bytes, bytes, int]:
        """Run an ADB command and return (stdout, stderr, returncode)."""
        cmd = [self._adb_bin, *args]
        limit = self._timeout if timeout is None else timeout
        proc: asyncio.subprocess.Process | None = None
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError as exc:
            if proc is not None and proc.returncode is None:
                proc.kill()
            raise AdbError(f"ADB command timed out after {limit}s: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise AdbError(f"adb binary not found: {self._adb_bin}") from exc
        except OSError as exc:
            raise AdbError(f"cannot run {self._adb_bin}: {exc}") from exc

        return stdout_b or b"", stderr_b or b"", proc.returncode or 0


def _parse_device_lines(output: str) -> list[tuple[str, dict[str, str]]]:
    """Parse ``adb devices [-l]`` output, keeping only ready devices."""
    devices: list[tuple[str, dict[str, str]]] = []
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("List of devices") or line.startswith("*"):
            continue
        parts = line.split()
        if len(parts) < 2 or parts[1] != "device":
            continue
        props: dict[str, str] = {}
        for token in parts[2:]:
            key, sep, value = token.partition(":")
            if sep:
                props[key] = value
        devices.append((parts[0], props))
    return devices
