"""JSON codec for the viewer wire protocol."""

from __future__ import annotations

import base64
import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from farmlink.shared.exceptions import ProtocolError
from farmlink.shared.models import FrameMessage, ServerMessage, ViewerCommand

_COMMAND_ADAPTER: TypeAdapter[ViewerCommand] = TypeAdapter(ViewerCommand)

KNOWN_COMMANDS = frozenset(
    {
        "touch_down",
        "touch_move",
        "touch_up",
        "tap",
        "swipe",
        "keyevent",
        "text",
        "start_recording",
        "stop_recording",
        "get_clipboard",
        "set_clipboard",
        "start_logs",
        "stop_logs",
        "start_logcat",
        "stop_logcat",
        "upload_file",
        "set_location",
        "get_device_info",
    }
)


class UnknownCommandError(ProtocolError):
    """Payload parsed but names a command type this relay does not know."""


def encode_message(message: ServerMessage) -> str:
    return message.model_dump_json()


def frame_message(image: bytes, image_format: str) -> FrameMessage:
    return FrameMessage(format=image_format, data=base64.b64encode(image).decode("ascii"))


def parse_command(payload: str | bytes) -> ViewerCommand:
    """Decode one viewer payload into a typed command.

    Raises:
        UnknownCommandError: If ``type`` is not a known command.
        ProtocolError: If the payload is not a valid command object.
    """
    try:
        raw: Any = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"payload is not JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ProtocolError("payload must be a JSON object")

    kind = raw.get("type")
    if not isinstance(kind, str) or kind not in KNOWN_COMMANDS:
        raise UnknownCommandError(f"unknown command type: {kind!r}")
    try:
        return _COMMAND_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise ProtocolError(f"invalid {kind} command: {exc.error_count()} error(s)") from exc
