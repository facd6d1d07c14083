"""Shared test fixtures for the phrase_listener test suite.

WHY: Admission, listener, pump and CLI tests all need the same kinds of
inputs: phrase lists, transcription records and recorded service frames.
Centralizing them keeps the expected utterances consistent across files.

HOW: Plain helper functions build service frames; pytest fixtures provide
a recorded session that ends in an accepted utterance and one that never
produces a qualifying record.

RULES:
- Frames mirror the streaming service's wire shape exactly
  ({"alternatives": [{"transcript": ...}], "isFinal": ..., "stability": ...})
- Recorded sessions include control frames and one garbled frame
"""

import json
from typing import List

import pytest


def _frame(transcript: str, is_final: bool = False, stability: float = 0.0) -> str:
    """Serialize a transcription result the way the service sends it."""
    return json.dumps({
        "alternatives": [{"transcript": transcript}],
        "isFinal": is_final,
        "stability": stability,
    })


@pytest.fixture
def phrases() -> List[str]:
    return ["kitty cat"]


@pytest.fixture
def accepted_frames() -> List[str]:
    """A recorded session: the stable interim result is the one accepted."""
    return [
        "got the configuration message",
        _frame("kitty", stability=0.01),
        "{not json",
        _frame("hello kitty", stability=0.5),
        _frame("hello kitty cat", stability=0.9),
        "end of utterance",
        _frame("Hello kitty cat.", is_final=True),
    ]


@pytest.fixture
def unanswered_frames() -> List[str]:
    """A recorded session with only unstable, non-matching interim results."""
    return [
        "got the configuration message",
        _frame("the weather", stability=0.2),
        _frame("the weather is nice", stability=0.4),
        "end of utterance",
    ]
