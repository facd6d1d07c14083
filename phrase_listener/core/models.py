"""Dataclasses for transcription records, session state and decisions.

WHY: The streaming service sends loosely shaped JSON; the admission
policy and the session listener need typed, predictable values. These
dataclasses are the contract between the channel (which parses), the
policy (which decides) and the listener (which resolves waiters).

HOW: Three dataclasses:
  TranscriptionRecord - one streamed result (transcript, isFinal, stability)
  SessionState        - per-session mutable state owned by the policy
  Decision            - the policy's verdict for one record

RULES:
- TranscriptionRecord is frozen: records are immutable once received
- SessionState.transcript starts as "" so edge-triggered phrase checks
  fire again even when the same utterance is heard twice in a row
- SessionState is never shared between sessions
- stability is a float in [0, 1]; missing stability parses as 0.0
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class MalformedRecordError(ValueError):
    """Raised when a streamed transcription result cannot be decoded.

    WHY: A single garbled frame must not end a listening session. A typed
    error lets the channel pump log and drop it while the session stays
    open.

    RULES:
    - raw holds the offending payload for diagnostics
    """

    def __init__(self, message: str, raw: Any = None) -> None:
        self.raw = raw
        super().__init__(message)


@dataclass(frozen=True)
class TranscriptionRecord:
    """A single streamed transcription result.

    RULES:
    - transcript: the top alternative's text, unnormalized
    - is_final: the service will not revise this result
    - stability: the service's confidence that an interim result will not
      change; reported as 0 on final results
    """

    transcript: str
    is_final: bool = False
    stability: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionRecord:
        """Parse a record from the service's result payload.

        HOW: Reads alternatives[0].transcript, isFinal and stability.

        RULES:
        - alternatives must be a non-empty list whose first entry has a
          string transcript
        - isFinal defaults to False, stability to 0.0
        - Any other shape raises MalformedRecordError
        """
        if not isinstance(data, dict):
            raise MalformedRecordError("Result payload is not an object", data)
        alternatives = data.get("alternatives")
        if not isinstance(alternatives, list) or not alternatives:
            raise MalformedRecordError("Result has no alternatives", data)
        first = alternatives[0]
        if not isinstance(first, dict) or not isinstance(first.get("transcript"), str):
            raise MalformedRecordError("First alternative has no transcript", data)

        stability = data.get("stability", 0.0)
        if isinstance(stability, bool) or not isinstance(stability, (int, float)):
            raise MalformedRecordError("stability must be a number", data)

        return cls(
            transcript=first["transcript"],
            is_final=bool(data.get("isFinal", False)),
            stability=float(stability),
        )


@dataclass
class SessionState:
    """Per-session state driven by the admission policy.

    RULES:
    - phrases: snapshot taken when the session starts, read-only afterwards
    - transcript: normalized transcript of the accepted record ("" until then)
    - utterance: accepted utterance (fuzzy-matched substring or transcript)
    - last_candidate: most recent deferred transcript, for diagnostics
    - accepted: set once; no record is evaluated after it
    """

    phrases: list[str] = field(default_factory=list)
    last_candidate: str | None = None
    accepted: bool = False
    transcript: str = ""
    utterance: str | None = None


@dataclass(frozen=True)
class Decision:
    """Verdict of the admission policy for one record.

    RULES:
    - accepted: True when the record ends the session
    - utterance: set only when accepted
    - transcript: the normalized transcript that was evaluated
    - match_index: fuzzy match offset into transcript, or -1
    - reason: "final", "exact_phrase", "stable_fuzzy", "deferred" or "closed"
    """

    accepted: bool
    reason: str
    transcript: str = ""
    utterance: str | None = None
    match_index: int = -1
