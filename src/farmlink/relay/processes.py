"""Helpers for the long-lived subprocesses behind capture and channels."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


async def terminate_process(proc: asyncio.subprocess.Process, *, timeout: float = 2.0) -> int | None:
    """SIGTERM a subprocess, escalating to SIGKILL after ``timeout``."""
    if proc.returncode is not None:
        return proc.returncode
    try:
        proc.terminate()
    except ProcessLookupError:
        return proc.returncode
    try:
        return await asyncio.wait_for(proc.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("process %s ignored SIGTERM, killing", proc.pid)
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        return await proc.wait()


async def log_stderr(stream: asyncio.StreamReader | None, label: str) -> None:
    """Consume a subprocess stderr so the pipe never fills."""
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            return
        text = line.decode(errors="replace").rstrip()
        if text and "INFO" not in text:
            logger.debug("%s stderr: %s", label, text)
