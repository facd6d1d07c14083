"""Admission policy for streamed transcription results.

WHY: A streaming recognizer sends a flurry of interim results before the
final one. Waiting for isFinal is slow; accepting every interim result is
wrong. The policy accepts a result as soon as it is trustworthy enough:
final, an exact expected phrase, or a stable approximate match.

HOW: evaluate() normalizes the transcript, fuzzy-matches the joined
phrase list against it, and combines three signals:
  final        - record.is_final
  exact_phrase - normalized transcript equals one expected phrase
  stable_fuzzy - the joined phrases matched and stability > threshold
An accepted record marks the SessionState as accepted and stores the
utterance: the fuzzy-matched slice when there is one, otherwise the whole
normalized transcript.

RULES:
- Normalization: lower-case, strip ". ? !", trim whitespace
- The fuzzy pattern is the phrase list joined with single spaces (one
  pattern for all phrases, not one match per phrase)
- Empty transcript or empty joined phrases skips fuzzy matching
- The fuzzy slice is clamped to the transcript's length
- Matcher errors (InvalidInputError, PatternTooLongError) propagate
- A session that is already accepted is never mutated again
"""

from __future__ import annotations

import logging
import re

from phrase_listener.config import STABILITY_THRESHOLD, STRIPPED_PUNCTUATION
from phrase_listener.core.fuzzy import DEFAULT_MATCH_CONFIG, MatchConfig, locate
from phrase_listener.core.models import Decision, SessionState, TranscriptionRecord

logger = logging.getLogger(__name__)

_STRIP_RE = re.compile("[{}]".format(re.escape(STRIPPED_PUNCTUATION)))


def normalize_transcript(text: str) -> str:
    """Lower-case text, remove ". ? !" and trim surrounding whitespace."""
    return _STRIP_RE.sub("", str(text).lower()).strip()


def compute_match(
    text: str,
    pattern: str,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> int:
    """Fuzzy-match pattern against text from the start.

    RULES:
    - Returns -1 without matching when text or pattern is empty
    - Otherwise returns locate(text, pattern, 0, config)
    """
    if not pattern or not text:
        return -1
    return locate(text, pattern, 0, config)


def evaluate(
    record: TranscriptionRecord,
    session: SessionState,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
    stability_threshold: float = STABILITY_THRESHOLD,
) -> Decision:
    """Decide whether a record is the session's utterance.

    Args:
        record: The streamed result to evaluate.
        session: The listening session's state; updated in place.
        config: Fuzzy matching thresholds.
        stability_threshold: Interim fuzzy matches need stability
            strictly above this value.

    Returns:
        An accepting Decision with the utterance, or a deferring one.

    Raises:
        InvalidInputError: Propagated from the matcher.
        PatternTooLongError: If the joined phrases exceed the matcher's
            bit width and no exact fast path applies.
    """
    if session.accepted:
        logger.debug("Ignoring record for an already accepted session")
        return Decision(accepted=False, reason="closed")

    transcript = normalize_transcript(record.transcript)
    joined_phrases = " ".join(session.phrases)

    match_index = compute_match(transcript, joined_phrases, config)
    fuzzy_text = None
    if match_index != -1:
        fuzzy_text = transcript[match_index:match_index + len(joined_phrases)]
        logger.debug("Fuzzy match at %d: %r", match_index, fuzzy_text)

    exact_phrase = transcript in session.phrases
    stable_fuzzy = match_index != -1 and record.stability > stability_threshold

    if record.is_final:
        reason = "final"
    elif exact_phrase:
        reason = "exact_phrase"
    elif stable_fuzzy:
        reason = "stable_fuzzy"
    else:
        session.last_candidate = transcript
        logger.debug("Not good enough yet: %r (stability %.2f)", transcript, record.stability)
        return Decision(
            accepted=False,
            reason="deferred",
            transcript=transcript,
            match_index=match_index,
        )

    utterance = fuzzy_text if fuzzy_text else transcript
    session.accepted = True
    session.transcript = transcript
    session.utterance = utterance
    return Decision(
        accepted=True,
        reason=reason,
        transcript=transcript,
        utterance=utterance,
        match_index=match_index,
    )


def speech_matches(
    phrase: str,
    transcript: str | None,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> bool:
    """Return True when a "when I hear" phrase occurs in a transcript.

    HOW: Normalize the phrase the same way transcripts are normalized,
    then fuzzy-match it against the transcript.

    RULES:
    - An empty phrase or empty transcript never matches
    - Matcher errors propagate
    """
    return compute_match(transcript or "", normalize_transcript(phrase), config) != -1
