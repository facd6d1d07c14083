"""Transcription channel glue.

WHY: Results arrive as raw frames from a streaming service. This package
turns frames into records and feeds them to a listening session.

HOW: messages.py decodes frames, pump.py drives a session from any
TranscriptionChannel.
"""

from phrase_listener.channel.messages import ControlMessage, parse_server_message
from phrase_listener.channel.pump import (
    SESSION_ENDED,
    MessageStreamChannel,
    TranscriptionChannel,
    drive_session,
)

__all__ = [
    "ControlMessage",
    "MessageStreamChannel",
    "SESSION_ENDED",
    "TranscriptionChannel",
    "drive_session",
    "parse_server_message",
]
