"""Decoding of frames received from the streaming transcription service.

WHY: The speech service interleaves plain-text control frames with JSON
transcription results on the same stream. The listener only cares about
results; control frames must be recognized and skipped, and garbled
results must be reported without ending the session.

HOW: parse_server_message() first checks the known control strings, then
parses JSON and validates it with jsonschema against RESULT_SCHEMA before
building a TranscriptionRecord.

RULES:
- Control frames: "got the configuration message" (setup acknowledged),
  "end of utterance" (speech ended, final result still pending)
- Results: {"alternatives": [{"transcript": ...}], "isFinal": ..., "stability": ...}
- Anything else raises MalformedRecordError
- Bytes frames must be UTF-8
"""

from __future__ import annotations

import enum
import json
from typing import Any, Dict, Union

import jsonschema

from phrase_listener.core.models import MalformedRecordError, TranscriptionRecord

RESULT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["alternatives"],
    "properties": {
        "alternatives": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["transcript"],
                "properties": {
                    "transcript": {"type": "string"},
                    "confidence": {"type": "number"},
                },
            },
        },
        "isFinal": {"type": "boolean"},
        "stability": {"type": "number", "minimum": 0, "maximum": 1},
    },
}


class ControlMessage(str, enum.Enum):
    """Plain-text control frames sent by the speech service."""

    CONFIG_ACK = "got the configuration message"
    END_OF_UTTERANCE = "end of utterance"


_CONTROL_BY_TEXT = {member.value: member for member in ControlMessage}


def parse_server_message(raw: Union[str, bytes]) -> Union[TranscriptionRecord, ControlMessage]:
    """Decode one frame from the speech service.

    Args:
        raw: The frame as received (text or UTF-8 bytes).

    Returns:
        A ControlMessage for control frames, otherwise a TranscriptionRecord.

    Raises:
        MalformedRecordError: If the frame is not a control frame and not
            a valid transcription result.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedRecordError("Frame is not valid UTF-8", raw) from exc

    text = raw.strip()
    control = _CONTROL_BY_TEXT.get(text)
    if control is not None:
        return control

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedRecordError(
            "Could not parse result JSON: {}".format(exc.msg), raw
        ) from exc

    try:
        jsonschema.validate(instance=data, schema=RESULT_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise MalformedRecordError(
            "Result does not match schema: {}".format(exc.message), raw
        ) from exc

    return TranscriptionRecord.from_dict(data)
