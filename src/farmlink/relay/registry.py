"""Process-wide mapping from device identifier to its live session."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator

from farmlink.relay.session import DeviceSession
from farmlink.shared.enums import SessionState

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str, Callable[[DeviceSession], None]], DeviceSession]


class SessionRegistry:
    """Own the device → session map and its lifecycle.

    All mutations happen on the event loop thread, so no lock is taken.
    A session removes itself (through the ``on_closed`` callback handed to
    the factory) the moment it starts stopping, which keeps closed
    sessions out of the map.
    """

    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._sessions: dict[str, DeviceSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._sessions

    def __iter__(self) -> Iterator[DeviceSession]:
        return iter(list(self._sessions.values()))

    def get(self, device_id: str) -> DeviceSession | None:
        return self._sessions.get(device_id)

    def get_or_create(self, device_id: str) -> tuple[DeviceSession, bool]:
        """Return the live session for ``device_id``, creating it if needed.

        Returns:
            ``(session, created)``; a created session still has to be started.
        """
        session = self._sessions.get(device_id)
        if session is not None and session.state in (SessionState.STARTING, SessionState.ACTIVE):
            return session, False
        session = self._factory(device_id, self._remove)
        self._sessions[device_id] = session
        logger.info("session created for %s (sessions=%d)", device_id, len(self._sessions))
        return session, True

    def device_ids(self) -> list[str]:
        return list(self._sessions)

    async def close_all(self) -> None:
        """Stop every session, e.g. on process shutdown."""
        sessions = list(self._sessions.values())
        if sessions:
            logger.info("stopping %d session(s)", len(sessions))
        await asyncio.gather(*(session.stop() for session in sessions))
        self._sessions.clear()

    def _remove(self, session: DeviceSession) -> None:
        current = self._sessions.get(session.device_id)
        if current is session:
            del self._sessions[session.device_id]
            logger.info("session removed for %s (sessions=%d)", session.device_id, len(self._sessions))
