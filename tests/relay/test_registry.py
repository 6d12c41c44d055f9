"""Tests for SessionRegistry."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from farmlink.config import Settings
from farmlink.relay.registry import SessionRegistry
from farmlink.relay.session import DeviceSession
from farmlink.relay.viewer import Viewer
from farmlink.shared.enums import SessionState


@pytest.fixture
def registry(resolver: AsyncMock, settings: Settings) -> SessionRegistry:
    def factory(device_id: str, on_closed) -> DeviceSession:
        return DeviceSession(device_id, resolver, settings, on_closed=on_closed)

    return SessionRegistry(factory)


class TestSessionRegistry:
    async def test_one_session_per_device(self, registry: SessionRegistry) -> None:
        first, created = registry.get_or_create("ABC123")
        again, created_again = registry.get_or_create("ABC123")
        other, _ = registry.get_or_create("DEF456")

        assert created is True
        assert created_again is False
        assert again is first
        assert other is not first
        assert len(registry) == 2
        assert sorted(registry.device_ids()) == ["ABC123", "DEF456"]

    async def test_stopping_session_is_removed(self, registry: SessionRegistry, transport) -> None:
        session, _ = registry.get_or_create("ABC123")
        viewer = Viewer(transport, "ABC123")
        viewer.start()
        session.attach(viewer)
        await session.start()

        await session.detach(viewer)

        assert "ABC123" not in registry
        assert registry.get("ABC123") is None

    async def test_closed_session_is_replaced(self, registry: SessionRegistry) -> None:
        session, _ = registry.get_or_create("ABC123")
        await session.stop()

        replacement, created = registry.get_or_create("ABC123")

        assert created is True
        assert replacement is not session
        assert replacement.state == SessionState.STARTING

    async def test_stale_removal_keeps_new_session(self, registry: SessionRegistry) -> None:
        old, _ = registry.get_or_create("ABC123")
        old.state = SessionState.CLOSED
        new, _ = registry.get_or_create("ABC123")

        registry._remove(old)

        assert registry.get("ABC123") is new

    async def test_close_all(self, registry: SessionRegistry) -> None:
        sessions = [registry.get_or_create(device_id)[0] for device_id in ("A", "B")]

        await registry.close_all()

        assert len(registry) == 0
        assert all(session.state == SessionState.CLOSED for session in sessions)
