"""Tests for the viewer wire codec."""

from __future__ import annotations

import base64
import json

import pytest

from farmlink.relay.protocol import UnknownCommandError, encode_message, frame_message, parse_command
from farmlink.shared.enums import Platform
from farmlink.shared.exceptions import ProtocolError
from farmlink.shared.models import InfoMessage, KeyEvent, SetLocation, StartLogs, Swipe, TouchUp


class TestParseCommand:
    def test_swipe_default_duration(self) -> None:
        command = parse_command('{"type": "swipe", "x1": 1, "y1": 2, "x2": 3, "y2": 4}')
        assert isinstance(command, Swipe)
        assert command.duration == 300

    def test_touch_up_without_coordinates(self) -> None:
        command = parse_command('{"type": "touch_up"}')
        assert isinstance(command, TouchUp)

    def test_keyevent_accepts_names(self) -> None:
        command = parse_command('{"type": "keyevent", "keycode": "KEYCODE_HOME"}')
        assert isinstance(command, KeyEvent)
        assert command.keycode == "KEYCODE_HOME"

    def test_logcat_alias(self) -> None:
        assert isinstance(parse_command('{"type": "start_logcat"}'), StartLogs)

    def test_location_altitude_default(self) -> None:
        command = parse_command(b'{"type": "set_location", "latitude": 52.5, "longitude": 13.4}')
        assert isinstance(command, SetLocation)
        assert command.altitude == 0

    def test_not_json(self) -> None:
        with pytest.raises(ProtocolError, match="not JSON"):
            parse_command("{nope")

    def test_not_an_object(self) -> None:
        with pytest.raises(ProtocolError, match="JSON object"):
            parse_command("[1, 2]")

    def test_unknown_type(self) -> None:
        with pytest.raises(UnknownCommandError):
            parse_command('{"type": "reboot"}')

    def test_unhashable_type(self) -> None:
        with pytest.raises(UnknownCommandError):
            parse_command('{"type": ["tap"]}')

    def test_missing_fields(self) -> None:
        with pytest.raises(ProtocolError, match="invalid tap"):
            parse_command('{"type": "tap", "x": 1}')


class TestEncoding:
    def test_info_field_names(self) -> None:
        payload = json.loads(
            encode_message(InfoMessage(deviceId="ABC123", width=1080, height=1920, platform=Platform.ANDROID, codec="png"))
        )
        assert payload == {
            "type": "info",
            "deviceId": "ABC123",
            "width": 1080,
            "height": 1920,
            "platform": "android",
            "codec": "png",
        }

    def test_frame_is_base64(self) -> None:
        message = frame_message(b"\xff\xd8\xff", "jpeg")
        assert message.format == "jpeg"
        assert base64.b64decode(message.data) == b"\xff\xd8\xff"
