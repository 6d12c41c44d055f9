"""Per-device gesture state machine with move coalescing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

from farmlink.device.interfaces import DeviceBackend
from farmlink.shared.exceptions import DeviceError

logger = logging.getLogger(__name__)

Point = tuple[int, int]


class TouchRelay:
    """Translate a viewer's pointer stream into device touch commands.

    States cycle ``Released -> Pressed -> Released``. Moves are coalesced:
    every move inside one window collapses into a single drag to the most
    recent coordinate, which bounds the command rate against a command
    channel far slower than pointer events. One relay exists per device
    and is shared by every viewer of that device.
    """

    def __init__(
        self,
        device_id: str,
        backend: DeviceBackend,
        *,
        coalesce_ms: int = 16,
        command_timeout_ms: int = 100,
    ) -> None:
        self.device_id = device_id
        self._backend = backend
        self._coalesce_ms = coalesce_ms
        self._timeout = command_timeout_ms / 1000
        self.pressed = False
        self.last_position: Point = (0, 0)
        self.pending_moves: list[Point] = []
        # Origin of the next drag: where the last dispatched command left the finger.
        self._anchor: Point = (0, 0)
        self._flush_task: asyncio.Task[None] | None = None
        self.commands_failed = 0

    @property
    def flush_scheduled(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    async def touch_down(self, x: float, y: float) -> None:
        if self.pressed:
            logger.debug("touch_down while pressed on %s, releasing previous gesture", self.device_id)
            await self.touch_up(*self.last_position)
        point = (round(x), round(y))
        self.pressed = True
        self.last_position = point
        self._anchor = point
        self.pending_moves.clear()
        await self._dispatch("down", self._backend.touch_down(*point, timeout=self._timeout))

    def touch_move(self, x: float, y: float) -> None:
        if not self.pressed:
            return
        point = (round(x), round(y))
        self.last_position = point
        self.pending_moves.append(point)
        if not self.flush_scheduled:
            self._flush_task = asyncio.create_task(self._flush_later(), name=f"touch-flush-{self.device_id}")

    async def flush(self) -> None:
        """Send one drag to the newest queued position; no-op when empty."""
        if not self.pending_moves:
            return
        target = self.pending_moves[-1]
        origin = self._anchor
        self.pending_moves.clear()
        self._anchor = target
        await self._dispatch(
            "drag",
            self._backend.touch_drag(*origin, *target, self._coalesce_ms, timeout=self._timeout),
        )

    async def touch_up(self, x: float | None = None, y: float | None = None) -> None:
        """Release at the last known position, landing any queued move first."""
        if not self.pressed:
            return
        self._cancel_flush()
        self.pressed = False
        await self.flush()
        await self._dispatch("up", self._backend.touch_up(*self.last_position, timeout=self._timeout))

    def reset(self) -> None:
        """Drop any gesture in progress without issuing commands."""
        self._cancel_flush()
        self.pending_moves.clear()
        self.pressed = False

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._coalesce_ms / 1000)
        self._flush_task = None
        await self.flush()

    def _cancel_flush(self) -> None:
        task = self._flush_task
        self._flush_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _dispatch(self, action: str, command: Awaitable[None]) -> None:
        try:
            await command
        except (DeviceError, asyncio.TimeoutError) as exc:
            self.commands_failed += 1
            logger.debug("touch %s failed on %s: %s", action, self.device_id, exc)
