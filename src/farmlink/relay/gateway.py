"""Connection gateway: attach viewers to sessions and route their input."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import uuid
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]

from farmlink.config import Settings
from farmlink.relay.protocol import UnknownCommandError, parse_command
from farmlink.relay.registry import SessionRegistry
from farmlink.relay.session import DeviceSession
from farmlink.relay.viewer import Viewer, ViewerTransport
from farmlink.shared.enums import CloseCode, SessionState
from farmlink.shared.exceptions import FarmlinkError, ProtocolError, RecordingError
from farmlink.shared.models import (
    ClipboardMessage,
    DeviceInfoMessage,
    ErrorMessage,
    FileUploadedMessage,
    GetClipboard,
    GetDeviceInfo,
    KeyEvent,
    LocationSetMessage,
    RecordingSavedMessage,
    RecordingStartedMessage,
    ServerMessage,
    SetClipboard,
    SetLocation,
    StartLogs,
    StartRecording,
    StopLogs,
    StopRecording,
    Swipe,
    Tap,
    Text,
    TouchDown,
    TouchMove,
    TouchUp,
    UploadFile,
    ViewerCommand,
)

logger = logging.getLogger(__name__)


class ConnectionGateway:
    """Transport-agnostic entry point for viewer connections.

    Gesture events are handled inline, in arrival order, because the
    touch relay's state machine depends on that order. Every other command
    is one-shot and runs as its own task so a slow query never delays the
    pointer stream; its reply (or error) goes back to the requesting viewer.
    """

    def __init__(self, registry: SessionRegistry, settings: Settings) -> None:
        self._registry = registry
        self._settings = settings
        self._sessions: dict[Viewer, DeviceSession] = {}
        self._tasks: dict[Viewer, set[asyncio.Task[None]]] = {}

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def on_connect(self, transport: ViewerTransport, device_id: str | None) -> Viewer | None:
        """Attach a new connection to its device session.

        Returns:
            The attached viewer, or None if the connection was rejected.
        """
        if not device_id:
            logger.error("connection rejected: no device ID provided")
            await transport.close(code=CloseCode.DEVICE_ID_REQUIRED, reason="Device ID required")
            return None

        viewer = Viewer(
            transport,
            device_id,
            max_pending=self._settings.viewer_queue_size,
            max_buffered_bytes=self._settings.viewer_max_buffer_bytes,
        )
        viewer.start()
        session, created = self._registry.get_or_create(device_id)
        session.attach(viewer)
        self._sessions[viewer] = session
        logger.info("viewer %s connected for device %s", viewer.id, device_id)

        active = await session.start() if created else await session.wait_started()
        if not active:
            self._sessions.pop(viewer, None)
            return None
        return viewer

    async def on_message(self, viewer: Viewer, payload: str | bytes) -> None:
        """Parse one viewer payload and dispatch it; bad input is dropped."""
        session = self._sessions.get(viewer)
        if session is None or session.state != SessionState.ACTIVE:
            logger.debug("message from viewer %s ignored, no active session", viewer.id)
            return
        try:
            command = parse_command(payload)
        except UnknownCommandError as exc:
            logger.info("viewer %s on %s: %s", viewer.id, viewer.device_id, exc)
            return
        except ProtocolError as exc:
            logger.warning("malformed payload from viewer %s on %s: %s", viewer.id, viewer.device_id, exc)
            return

        if isinstance(command, (TouchDown, TouchMove, TouchUp)):
            await self._handle_gesture(session, command)
            return

        task = asyncio.create_task(self._run_command(viewer, session, command))
        pending = self._tasks.setdefault(viewer, set())
        pending.add(task)
        task.add_done_callback(pending.discard)

    async def on_close(self, viewer: Viewer) -> None:
        """Detach a viewer whose connection ended. Idempotent."""
        session = self._sessions.pop(viewer, None)
        viewer.abandon()
        await self._cancel_commands(viewer)
        if session is not None:
            logger.info("viewer %s disconnected from device %s", viewer.id, viewer.device_id)
            await session.detach(viewer)

    async def on_error(self, viewer: Viewer, exc: BaseException) -> None:
        logger.error("connection error for viewer %s on %s: %s", viewer.id, viewer.device_id, exc)
        await self.on_close(viewer)

    async def aclose(self) -> None:
        """Stop every session and abandon in-flight commands."""
        await self._registry.close_all()
        for viewer in list(self._tasks):
            await self._cancel_commands(viewer)
        self._sessions.clear()

    async def _cancel_commands(self, viewer: Viewer) -> None:
        pending = self._tasks.pop(viewer, set())
        current = asyncio.current_task()
        tasks = [task for task in pending if task is not current and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            logger.debug("cancelled %d in-flight command(s) for viewer %s", len(tasks), viewer.id)
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _handle_gesture(self, session: DeviceSession, command: TouchDown | TouchMove | TouchUp) -> None:
        touch = session.touch
        if touch is None:
            return
        if isinstance(command, TouchDown):
            await touch.touch_down(command.x, command.y)
        elif isinstance(command, TouchMove):
            touch.touch_move(command.x, command.y)
        else:
            await touch.touch_up(command.x, command.y)

    async def _run_command(self, viewer: Viewer, session: DeviceSession, command: ViewerCommand) -> None:
        try:
            reply = await self._execute(session, command)
        except asyncio.CancelledError:
            raise
        except FarmlinkError as exc:
            logger.warning("%s failed for %s: %s", command.type, session.device_id, exc)
            viewer.send(ErrorMessage(message=f"{command.type} failed: {exc}"))
            return
        except Exception as exc:
            logger.exception("%s crashed for %s: %s", command.type, session.device_id, exc)
            viewer.send(ErrorMessage(message=f"{command.type} failed"))
            return
        if reply is not None:
            viewer.send(reply)

    async def _execute(self, session: DeviceSession, command: ViewerCommand) -> ServerMessage | None:  # noqa: C901
        backend = session.backend
        if backend is None:
            raise FarmlinkError("session has no device backend")

        if isinstance(command, Tap):
            await backend.tap(round(command.x), round(command.y))
        elif isinstance(command, Swipe):
            await backend.swipe(
                round(command.x1),
                round(command.y1),
                round(command.x2),
                round(command.y2),
                command.duration,
            )
        elif isinstance(command, KeyEvent):
            await backend.keyevent(command.keycode)
        elif isinstance(command, Text):
            await backend.text(command.text)
        elif isinstance(command, StartRecording):
            if session.recording is None:
                raise RecordingError("recording channel unavailable")
            await session.recording.start()
            return RecordingStartedMessage()
        elif isinstance(command, StopRecording):
            if session.recording is None:
                raise RecordingError("recording channel unavailable")
            return RecordingSavedMessage(path=await session.recording.stop())
        elif isinstance(command, GetClipboard):
            return ClipboardMessage(text=await backend.get_clipboard())
        elif isinstance(command, SetClipboard):
            await backend.set_clipboard(command.text)
        elif isinstance(command, StartLogs):
            await session.start_logs()
        elif isinstance(command, StopLogs):
            await session.stop_logs()
        elif isinstance(command, UploadFile):
            filename = await self._upload(session, command)
            return FileUploadedMessage(filename=filename)
        elif isinstance(command, SetLocation):
            await backend.set_location(command.latitude, command.longitude, command.altitude)
            return LocationSetMessage(latitude=command.latitude, longitude=command.longitude)
        elif isinstance(command, GetDeviceInfo):
            return DeviceInfoMessage(data=await backend.metrics())
        return None

    async def _upload(self, session: DeviceSession, command: UploadFile) -> str:
        """Stage the decoded payload locally, push it, remove the stage file."""
        assert session.backend is not None
        filename = os.path.basename(command.filename.replace("\\", "/")).strip()
        if not filename or filename in (".", ".."):
            raise ProtocolError(f"invalid upload filename: {command.filename!r}")
        try:
            content = base64.b64decode(command.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ProtocolError(f"upload data for {filename} is not base64") from exc

        staging_dir = Path(self._settings.upload_tmp_dir)
        staging_dir.mkdir(parents=True, exist_ok=True)
        staged = staging_dir / f"{uuid.uuid4().hex}_{filename}"
        async with aiofiles.open(staged, "wb") as f:
            await f.write(content)
        try:
            await session.backend.push_file(str(staged), filename)
        finally:
            staged.unlink(missing_ok=True)
        logger.info("uploaded %s (%d bytes) to %s", filename, len(content), session.device_id)
        return filename
