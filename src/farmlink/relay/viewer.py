"""Per-viewer outbound channel with drop-oldest backpressure."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol

from farmlink.relay.protocol import encode_message
from farmlink.shared.enums import CloseCode
from farmlink.shared.models import ServerMessage

logger = logging.getLogger(__name__)


class ViewerTransport(Protocol):
    """The bidirectional channel a viewer is connected through.

    Starlette's ``WebSocket`` satisfies this protocol directly.
    """

    async def send_text(self, data: str) -> None: ...

    async def send_bytes(self, data: bytes) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(slots=True)
class _Outgoing:
    payload: str | bytes
    droppable: bool


class Viewer:
    """One connected viewer and its ordered outbound queue.

    Messages are written by a dedicated writer task in enqueue order.
    When the queue is full the oldest droppable entry (frames, log lines)
    is discarded so a slow viewer always receives the freshest data and
    never stalls fan-out to the others.

    Non-droppable payloads (stream chunks, replies) are never discarded
    individually. If they pile up past ``max_buffered_bytes`` the viewer
    cannot keep up with the stream at all: the backlog is dropped and the
    connection is closed with ``VIEWER_TOO_SLOW``.
    """

    def __init__(
        self,
        transport: ViewerTransport,
        device_id: str,
        *,
        max_pending: int = 8,
        max_buffered_bytes: int = 32 * 1024 * 1024,
    ) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.device_id = device_id
        self._transport = transport
        self._max_pending = max(1, max_pending)
        self._max_buffered_bytes = max(1, max_buffered_bytes)
        self._outbox: deque[_Outgoing] = deque()
        self._buffered = 0
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._close_request: tuple[int, str] | None = None
        self._closed = False
        self._writer: asyncio.Task[None] | None = None
        self.dropped = 0

    def __repr__(self) -> str:
        return f"Viewer(id={self.id!r}, device_id={self.device_id!r})"

    @property
    def is_open(self) -> bool:
        return not self._closed and self._close_request is None

    @property
    def pending(self) -> int:
        return len(self._outbox)

    @property
    def buffered_bytes(self) -> int:
        return self._buffered

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"viewer-{self.id}")

    def send(self, message: ServerMessage, *, droppable: bool = False) -> None:
        self._enqueue(encode_message(message), droppable)

    def send_raw(self, payload: str | bytes, *, droppable: bool = False) -> None:
        """Queue an already-encoded payload; ``bytes`` go out as binary frames."""
        self._enqueue(payload, droppable)

    async def drain(self) -> None:
        """Wait until everything queued so far has been written."""
        await self._idle.wait()

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "", *, timeout: float = 2.0) -> None:
        """Flush queued messages, then close the transport. Idempotent."""
        if self._closed or self._close_request is not None:
            return
        self._close_request = (int(code), reason)
        if self._writer is None:
            await self._finish()
            return
        self._wakeup.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._writer), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("viewer %s did not flush within %.1fs; closing", self.id, timeout)
            self._writer.cancel()
            await self._finish()

    def abandon(self) -> None:
        """Stop writing without closing the transport (peer already gone)."""
        self._closed = True
        self._outbox.clear()
        self._buffered = 0
        self._idle.set()
        if self._writer is not None:
            self._writer.cancel()

    def _enqueue(self, payload: str | bytes, droppable: bool) -> None:
        if not self.is_open:
            return
        if droppable and len(self._outbox) >= self._max_pending:
            for index, queued in enumerate(self._outbox):
                if queued.droppable:
                    del self._outbox[index]
                    self._buffered -= len(queued.payload)
                    self.dropped += 1
                    if self.dropped % 100 == 1:
                        logger.debug("viewer %s slow, dropped %d message(s) so far", self.id, self.dropped)
                    break
        if self._buffered + len(payload) > self._max_buffered_bytes:
            self._overflow()
            return
        self._outbox.append(_Outgoing(payload, droppable))
        self._buffered += len(payload)
        self._idle.clear()
        self._wakeup.set()

    def _overflow(self) -> None:
        logger.warning(
            "viewer %s on %s fell %d bytes behind, closing",
            self.id,
            self.device_id,
            self._buffered,
        )
        self._outbox.clear()
        self._buffered = 0
        self._close_request = (int(CloseCode.VIEWER_TOO_SLOW), "Viewer too slow")
        if self._writer is None:
            self.start()
        self._wakeup.set()

    async def _write_loop(self) -> None:
        try:
            while True:
                while self._outbox:
                    item = self._outbox.popleft()
                    self._buffered -= len(item.payload)
                    if isinstance(item.payload, bytes):
                        await self._transport.send_bytes(item.payload)
                    else:
                        await self._transport.send_text(item.payload)
                self._idle.set()
                if self._close_request is not None:
                    break
                self._wakeup.clear()
                await self._wakeup.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("viewer %s send failed, dropping output: %s", self.id, exc)
            self._outbox.clear()
            self._buffered = 0
            self._idle.set()
            self._closed = True
            return
        await self._finish()

    async def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._idle.set()
        code, reason = self._close_request or (int(CloseCode.NORMAL), "")
        try:
            await self._transport.close(code=code, reason=reason)
        except Exception as exc:
            logger.debug("viewer %s close failed: %s", self.id, exc)
