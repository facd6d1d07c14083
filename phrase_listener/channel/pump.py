"""Feeding a transcription channel into a listening session.

WHY: Whatever transport delivers results (a websocket, a replay file, a
test list), the per-frame handling is the same: drop garbage, skip
control frames, evaluate results, and resolve the session when the
service ends it. Keeping that loop here keeps transports thin.

HOW: A TranscriptionChannel returns one item per next() call: a
TranscriptionRecord, a ControlMessage, or SESSION_ENDED. drive_session()
loops until the session resolves.

RULES:
- MalformedRecordError from the channel is logged and the frame dropped;
  the session stays open
- Control frames are ignored ("end of utterance" does not mean the final
  result has arrived)
- SESSION_ENDED without an accepted result times the session out
- Matcher errors from handle_record() fail the session (waiters are
  released with no result) and then propagate to the caller
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Union

from phrase_listener.channel.messages import ControlMessage, parse_server_message
from phrase_listener.core.models import MalformedRecordError, TranscriptionRecord
from phrase_listener.session.listener import ListenSession, SpeechListener

logger = logging.getLogger(__name__)


class _SessionEnded:
    def __repr__(self) -> str:
        return "SESSION_ENDED"


SESSION_ENDED = _SessionEnded()
"""Returned by TranscriptionChannel.next() when the service closed the stream."""

ChannelItem = Union[TranscriptionRecord, ControlMessage, _SessionEnded]


class TranscriptionChannel(Protocol):
    """Source of streamed transcription results for one session."""

    def next(self) -> ChannelItem:
        ...


class MessageStreamChannel:
    """Channel over an iterable of raw service frames.

    RULES:
    - Frames are decoded lazily with parse_server_message()
    - Exhausting the iterable yields SESSION_ENDED (repeatedly)
    """

    def __init__(self, frames: Iterable[Union[str, bytes]]) -> None:
        self._frames = iter(frames)

    def next(self) -> ChannelItem:
        try:
            raw = next(self._frames)
        except StopIteration:
            return SESSION_ENDED
        return parse_server_message(raw)


def drive_session(
    listener: SpeechListener,
    session: ListenSession,
    channel: TranscriptionChannel,
) -> Optional[str]:
    """Pump channel items into the session until it resolves.

    Returns:
        The accepted utterance, or None if the session ended without one.
    """
    while not session.done:
        try:
            item = channel.next()
        except MalformedRecordError as exc:
            logger.warning("Dropping malformed record for session %s: %s", session.id, exc)
            continue

        if item is SESSION_ENDED:
            listener.end_session(session)
            break
        if isinstance(item, ControlMessage):
            logger.debug("Control frame for session %s: %s", session.id, item.value)
            continue

        decision = listener.handle_record(session, item)
        logger.debug("Session %s: %s %r", session.id, decision.reason, decision.transcript)

    return session.utterance
