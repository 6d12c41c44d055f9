"""Device session: one per physical device, fanning capture out to viewers."""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from typing import Any

from farmlink.config import Settings
from farmlink.device.imaging import JpegTranscoder
from farmlink.device.interfaces import BackendResolver, DeviceBackend
from farmlink.relay.capture import PeriodicCapture, StreamCapture
from farmlink.relay.channels import LogChannel, RecordingChannel
from farmlink.relay.protocol import encode_message, frame_message
from farmlink.relay.touch import TouchRelay
from farmlink.relay.viewer import Viewer
from farmlink.shared.enums import CloseCode, SessionState
from farmlink.shared.exceptions import ChannelError, FarmlinkError
from farmlink.shared.models import ErrorMessage, InfoMessage, LogMessage, RecordingSavedMessage, ServerMessage

logger = logging.getLogger(__name__)


class DeviceSession:
    """Multiplex one device's screen, logs and input across its viewers.

    Lifecycle: ``STARTING -> ACTIVE -> STOPPING -> CLOSED``. The session
    holds viewers weakly; their connections belong to the gateway. It is
    torn down when the last viewer detaches or capture fails fatally, and
    ``on_closed`` fires as soon as teardown begins so the registry never
    hands out a stopping session.
    """

    def __init__(
        self,
        device_id: str,
        resolver: BackendResolver,
        settings: Settings,
        *,
        on_closed: Callable[[DeviceSession], None] | None = None,
        transcoder: JpegTranscoder | None = None,
    ) -> None:
        self.device_id = device_id
        self._resolver = resolver
        self._settings = settings
        self._on_closed = on_closed
        self._transcoder = transcoder or JpegTranscoder(
            ffmpeg_bin=settings.ffmpeg_bin,
            quality=settings.jpeg_quality,
            timeout=settings.capture_timeout_seconds,
        )
        self.state = SessionState.STARTING
        self.viewers: weakref.WeakSet[Viewer] = weakref.WeakSet()
        self.backend: DeviceBackend | None = None
        self.dimensions: tuple[int, int] | None = None
        self.codec = settings.frame_format
        self.touch: TouchRelay | None = None
        self.logs: LogChannel | None = None
        self.recording: RecordingChannel | None = None
        self._capture: PeriodicCapture | StreamCapture | None = None
        self._started = asyncio.Event()

    def __repr__(self) -> str:
        return f"DeviceSession(device_id={self.device_id!r}, state={self.state.value})"

    @property
    def capture(self) -> PeriodicCapture | StreamCapture | None:
        return self._capture

    def has_viewers(self) -> bool:
        return len(self.viewers) > 0

    async def wait_started(self) -> bool:
        """Wait until start-up finished; True if the session went active."""
        await self._started.wait()
        return self.state == SessionState.ACTIVE

    # ── lifecycle ───────────────────────────────────────────────

    async def start(self) -> bool:
        """Verify reachability, resolve dimensions and begin streaming.

        On failure every waiting viewer receives an ``error`` message and
        is closed with ``STREAM_INIT_FAILED``; the session ends without
        ever becoming active.

        Returns:
            True if the session is now active.
        """
        if self.state != SessionState.STARTING:
            return self.state == SessionState.ACTIVE
        try:
            return await self._start()
        finally:
            if self.state == SessionState.STARTING:
                # Cancelled mid start-up: release the registry slot and any waiters.
                self.state = SessionState.CLOSED
                if self._on_closed is not None:
                    self._on_closed(self)
            self._started.set()

    async def _start(self) -> bool:
        try:
            backend = await self._resolver.resolve(self.device_id)
            self.backend = backend
            self.dimensions = await backend.resolve_dimensions()
        except Exception as exc:
            if isinstance(exc, FarmlinkError):
                logger.error("failed to start session for %s: %s", self.device_id, exc)
            else:
                logger.exception("unexpected error starting session for %s: %s", self.device_id, exc)
            await self._fail_start(f"Failed to connect to device: {exc}")
            return False

        if not self.viewers:
            logger.info("all viewers left %s during start-up", self.device_id)
            await self.stop()
            return False

        self.touch = TouchRelay(
            self.device_id,
            backend,
            coalesce_ms=self._settings.touch_coalesce_ms,
            command_timeout_ms=self._settings.touch_command_timeout_ms,
        )
        self.logs = LogChannel(self.device_id, backend.spawn_logs, self._publish_log)
        self.recording = RecordingChannel(
            self.device_id,
            backend,
            output_dir=self._settings.recording_dir,
            max_seconds=self._settings.recording_max_seconds,
            on_saved=self._publish_recording,
        )
        self._capture = self._build_capture(backend)
        self.codec = "h264" if isinstance(self._capture, StreamCapture) else self._settings.frame_format

        self.state = SessionState.ACTIVE
        self._started.set()
        width, height = self.dimensions
        logger.info(
            "session active for %s (%s %dx%d, codec=%s, viewers=%d)",
            self.device_id,
            backend.platform.value,
            width,
            height,
            self.codec,
            len(self.viewers),
        )
        self._broadcast(self._info())

        if isinstance(self._capture, StreamCapture):
            try:
                await self._capture.start()
            except Exception as exc:
                await self.fail(f"Failed to start capture: {exc}")
                return False
        else:
            self._capture.start()
            self._capture.tick()

        if self._settings.logs_autostart:
            await self._autostart_logs()
        return self.state == SessionState.ACTIVE

    def attach(self, viewer: Viewer) -> None:
        """Add a viewer; an active session greets it with ``info`` first."""
        if self.state in (SessionState.STOPPING, SessionState.CLOSED):
            raise RuntimeError(f"cannot attach to {self.state.value} session {self.device_id}")
        if viewer in self.viewers:
            return
        # Queue info before joining the fan-out set so no frame can precede it.
        if self.state == SessionState.ACTIVE:
            viewer.send(self._info())
        self.viewers.add(viewer)
        logger.info("viewer %s attached to %s (viewers=%d)", viewer.id, self.device_id, len(self.viewers))

    async def detach(self, viewer: Viewer) -> None:
        """Remove a viewer; the last one out stops the session. Idempotent."""
        if viewer not in self.viewers:
            return
        self.viewers.discard(viewer)
        logger.info("viewer %s detached from %s (viewers=%d)", viewer.id, self.device_id, len(self.viewers))
        if not self.viewers and self.state == SessionState.ACTIVE:
            logger.info("no more viewers for %s, stopping session", self.device_id)
            await self.stop()

    async def stop(self, *, code: int = CloseCode.NORMAL, reason: str = "Stream ended") -> None:
        """Cancel capture, end every channel, close leftover viewers."""
        if self.state in (SessionState.STOPPING, SessionState.CLOSED):
            return
        self.state = SessionState.STOPPING
        self._started.set()
        if self._on_closed is not None:
            self._on_closed(self)

        if self._capture is not None:
            await self._capture.stop()
        if self.touch is not None:
            self.touch.reset()
        if self.logs is not None:
            await self.logs.close()
        if self.recording is not None:
            await self.recording.close()
        if self.backend is not None:
            try:
                await self.backend.close()
            except Exception as exc:
                logger.debug("backend close failed for %s: %s", self.device_id, exc)

        leftovers = list(self.viewers)
        self.viewers = weakref.WeakSet()
        await asyncio.gather(
            *(v.close(code, reason, timeout=self._settings.viewer_close_timeout_seconds) for v in leftovers)
        )
        self.state = SessionState.CLOSED
        logger.info("session closed for %s", self.device_id)

    async def fail(self, message: str) -> None:
        """Session-fatal failure: tell every viewer, then tear down."""
        if self.state in (SessionState.STOPPING, SessionState.CLOSED):
            return
        logger.error("session for %s failed: %s", self.device_id, message)
        self._broadcast(ErrorMessage(message=message))
        await self.stop(code=CloseCode.CAPTURE_FAILED, reason="Capture failed")

    # ── ancillary control ───────────────────────────────────────

    async def start_logs(self) -> None:
        """Start log streaming on an active session.

        Raises:
            ChannelError: If the session is not active.
            DeviceError: If the log subprocess cannot be spawned.
        """
        if self.state != SessionState.ACTIVE or self.logs is None:
            raise ChannelError(f"session for {self.device_id} is {self.state.value}, logs unavailable")
        await self.logs.start()

    async def _autostart_logs(self) -> None:
        try:
            await self.start_logs()
        except FarmlinkError as exc:
            logger.warning("log streaming unavailable for %s: %s", self.device_id, exc)

    async def stop_logs(self) -> None:
        if self.logs is not None:
            await self.logs.stop()

    def describe(self) -> dict[str, Any]:
        width, height = self.dimensions or (None, None)
        return {
            "device_id": self.device_id,
            "platform": self.backend.platform.value if self.backend is not None else None,
            "state": self.state.value,
            "viewers": len(self.viewers),
            "width": width,
            "height": height,
            "codec": self.codec,
            "logs": bool(self.logs and self.logs.running),
            "recording": bool(self.recording and self.recording.active),
        }

    # ── fan-out ─────────────────────────────────────────────────

    def publish_frame(self, image: bytes) -> None:
        payload = encode_message(frame_message(image, self._settings.frame_format))
        for viewer in list(self.viewers):
            viewer.send_raw(payload, droppable=True)

    def publish_chunk(self, chunk: bytes) -> None:
        for viewer in list(self.viewers):
            viewer.send_raw(chunk)

    def _publish_log(self, line: str) -> None:
        payload = encode_message(LogMessage(data=line))
        for viewer in list(self.viewers):
            viewer.send_raw(payload, droppable=True)

    def _publish_recording(self, path: str) -> None:
        self._broadcast(RecordingSavedMessage(path=path))

    def _broadcast(self, message: ServerMessage) -> None:
        payload = encode_message(message)
        for viewer in list(self.viewers):
            viewer.send_raw(payload)

    def _info(self) -> InfoMessage:
        assert self.backend is not None and self.dimensions is not None
        width, height = self.dimensions
        return InfoMessage(
            deviceId=self.device_id,
            width=width,
            height=height,
            platform=self.backend.platform,
            codec=self.codec,
        )

    def _build_capture(self, backend: DeviceBackend) -> PeriodicCapture | StreamCapture:
        strategy = self._settings.capture_strategy.strip().lower()
        wants_stream = strategy == "stream" or (strategy == "auto" and backend.supports_stream)
        if wants_stream and not backend.supports_stream:
            logger.warning("%s has no stream capture, falling back to still capture", self.device_id)
            wants_stream = False
        if wants_stream:
            return StreamCapture(
                self.device_id,
                backend.open_stream,
                self.publish_chunk,
                self.fail,
                chunk_size=self._settings.stream_chunk_size,
            )
        return PeriodicCapture(
            self.device_id,
            self._grab_still,
            self.publish_frame,
            self.has_viewers,
            interval=self._settings.frame_interval,
        )

    async def _grab_still(self) -> bytes:
        assert self.backend is not None
        image = await self.backend.capture_frame()
        if self._settings.frame_format == "jpeg":
            return await self._transcoder.transcode(image)
        return image

    async def _fail_start(self, message: str) -> None:
        self.state = SessionState.STOPPING
        self._started.set()
        if self._on_closed is not None:
            self._on_closed(self)
        self._broadcast(ErrorMessage(message=message))
        waiting = list(self.viewers)
        self.viewers = weakref.WeakSet()
        await asyncio.gather(
            *(
                v.close(
                    CloseCode.STREAM_INIT_FAILED,
                    "Stream initialization failed",
                    timeout=self._settings.viewer_close_timeout_seconds,
                )
                for v in waiting
            )
        )
        if self.backend is not None:
            try:
                await self.backend.close()
            except Exception as exc:
                logger.debug("backend close failed for %s: %s", self.device_id, exc)
        self.state = SessionState.CLOSED
