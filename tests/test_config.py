"""Tests for environment-driven settings."""

from __future__ import annotations

import pytest

from farmlink.config import Settings


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.relay_port == 8080
        assert settings.touch_command_timeout_ms == 100
        assert settings.recording_max_seconds == 180

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FARMLINK_RELAY_PORT", "9000")
        monkeypatch.setenv("FARMLINK_CAPTURE_STRATEGY", "stream")
        settings = Settings()
        assert settings.relay_port == 9000
        assert settings.capture_strategy == "stream"

    def test_frame_interval_is_clamped(self) -> None:
        assert Settings(frame_rate=30).frame_interval == pytest.approx(1 / 30)
        assert Settings(frame_rate=500).frame_interval == pytest.approx(1 / 60)
        assert Settings(frame_rate=0).frame_interval == 1.0

    def test_dsn(self) -> None:
        settings = Settings(db_host="db", db_user="u", db_password="p", db_name="n")
        assert settings.dsn == "postgresql://u:p@db:5432/n"
