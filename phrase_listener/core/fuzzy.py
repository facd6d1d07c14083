"""Approximate substring search (Bitap) for noisy transcriptions.

WHY: Streaming speech recognition rarely returns exactly the phrase a
project is waiting for. "hello world" comes back as "hello word" or
"hello world please". The listener needs to know whether the expected
phrase occurs *approximately* in a transcript, and where.

HOW: locate() checks cheap exact cases first, then falls back to the
Bitap algorithm: every pattern character gets a bitmask of its positions,
and a bit-parallel dynamic-programming pass per allowed error count finds
candidate match positions. Each candidate is scored by error rate plus
distance from the expected location; a binary search bounds how far from
the expected location each error level may look.

RULES:
- locate() returns a character offset into text, or -1 for no match
- None text, pattern or loc raises InvalidInputError
- An empty pattern matches trivially at loc
- Patterns longer than MatchConfig.max_bits raise PatternTooLongError,
  but only on the fuzzy path (exact fast paths never raise)
- Scores: 0.0 is a perfect match at loc, matches scoring above
  MatchConfig.threshold are rejected
- All functions are pure and safe to call from several threads
"""

from __future__ import annotations

import functools
from dataclasses import dataclass

from phrase_listener.config import MATCH_DISTANCE, MATCH_MAX_BITS, MATCH_THRESHOLD


class InvalidInputError(ValueError):
    """Raised when locate() is called with a missing text, pattern or location.

    WHY: A None argument is a caller bug, not a "no match". Surfacing it
    keeps the bug visible instead of quietly deferring forever.

    RULES:
    - Raised before any matching work is done
    """


class PatternTooLongError(ValueError):
    """Raised when a pattern exceeds the Bitap bitmask width.

    WHY: Bitap keeps one bit per pattern character, so the pattern length
    is bounded by max_bits. Callers can catch this and fall back to exact
    matching or truncate the pattern.

    RULES:
    - length and max_bits are exposed for callers that want to truncate
    """

    def __init__(self, length: int, max_bits: int) -> None:
        self.length = length
        self.max_bits = max_bits
        super().__init__(
            "Pattern of {} characters is too long for fuzzy matching "
            "(limit {})".format(length, max_bits)
        )


@dataclass(frozen=True)
class MatchConfig:
    """Tuning knobs for the Bitap matcher.

    RULES:
    - threshold: 0.0 = perfection only, 1.0 = very loose
    - max_distance: a match this many characters away from loc adds 1.0
      to its score; 0 means only matches exactly at loc are acceptable
    - max_bits: maximum pattern length on the fuzzy path
    """

    threshold: float = MATCH_THRESHOLD
    max_distance: int = MATCH_DISTANCE
    max_bits: int = MATCH_MAX_BITS


DEFAULT_MATCH_CONFIG = MatchConfig()


def match_alphabet(pattern: str) -> dict[str, int]:
    """Build the Bitap alphabet for a pattern.

    HOW: Each distinct character maps to a bitmask with one bit set per
    position where it occurs. Bit 0 is the last character of the pattern.

    >>> match_alphabet("abc")
    {'a': 4, 'b': 2, 'c': 1}
    """
    alphabet: dict[str, int] = {}
    length = len(pattern)
    for i, char in enumerate(pattern):
        alphabet[char] = alphabet.get(char, 0) | (1 << (length - i - 1))
    return alphabet


def bitap_score(
    errors: int,
    x: int,
    loc: int,
    pattern_length: int,
    max_distance: int,
) -> float:
    """Score a candidate match with `errors` errors located at `x`.

    WHY: Bitap finds many candidates; the best one balances how many
    characters differ against how far it sits from the expected location.

    HOW: error rate (errors / pattern_length) plus proximity
    (|loc - x| / max_distance).

    RULES:
    - 0.0 = perfect match at loc, larger is worse
    - max_distance == 0: any x other than loc scores 1.0, x == loc scores
      the error rate alone (no division by zero); this is the scoring of
      the diff-match-patch matcher the listener was modelled on, not a
      plain 0 at loc
    """
    accuracy = errors / pattern_length
    proximity = abs(loc - x)
    if not max_distance:
        return 1.0 if proximity else accuracy
    return accuracy + (proximity / max_distance)


def locate(
    text: str,
    pattern: str,
    loc: int,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> int:
    """Locate the best approximate occurrence of pattern in text near loc.

    HOW: Clamp loc into the text, try the exact fast paths, then run
    bitap_search().

    RULES:
    - text == pattern → 0
    - empty text → -1
    - exact occurrence starting at loc → loc (covers the empty pattern)
    - otherwise the Bitap result (may raise PatternTooLongError)

    Args:
        text: The text to search (usually a normalized transcript).
        pattern: The pattern to search for.
        loc: Expected location of the pattern.
        config: Matching thresholds; defaults to DEFAULT_MATCH_CONFIG.

    Returns:
        Start offset of the best match, or -1.

    Raises:
        InvalidInputError: If text, pattern or loc is None.
        PatternTooLongError: If the fuzzy path is needed and the pattern
            is longer than config.max_bits.
    """
    if text is None or pattern is None or loc is None:
        raise InvalidInputError("Null input: text, pattern and loc are required")

    loc = max(0, min(loc, len(text)))
    if text == pattern:
        # Shortcut (potentially not guaranteed by the algorithm)
        return 0
    if not text:
        return -1
    if text[loc:loc + len(pattern)] == pattern:
        return loc
    return bitap_search(text, pattern, loc, config)


def bitap_search(
    text: str,
    pattern: str,
    loc: int,
    config: MatchConfig = DEFAULT_MATCH_CONFIG,
) -> int:
    """Locate the best instance of pattern in text near loc using Bitap.

    HOW: For d = 0, 1, 2, ... errors, binary-search the widest window
    around loc whose best possible score still beats the threshold, then
    run one bit-parallel pass right to left over that window. A set top
    bit in rd[j] means the pattern starts at j - 1 with at most d errors.
    Each better candidate tightens the threshold.

    RULES:
    - loc must already be clamped into [0, len(text)]
    - Raises PatternTooLongError when len(pattern) > config.max_bits
    - Returns -1 if no candidate scores at or below the threshold
    """
    pattern_length = len(pattern)
    if pattern_length > config.max_bits:
        raise PatternTooLongError(pattern_length, config.max_bits)
    if not pattern_length:
        return loc

    alphabet = match_alphabet(pattern)
    score = functools.partial(
        bitap_score,
        loc=loc,
        pattern_length=pattern_length,
        max_distance=config.max_distance,
    )
    text_length = len(text)

    # Highest score beyond which we give up.
    threshold = config.threshold

    # A nearby exact match tightens the threshold before the fuzzy passes.
    best_loc = text.find(pattern, loc)
    if best_loc != -1:
        threshold = min(score(0, best_loc), threshold)
        # Last exact occurrence starting at or before loc + pattern_length
        best_loc = text.rfind(pattern, 0, loc + 2 * pattern_length)
        if best_loc != -1:
            threshold = min(score(0, best_loc), threshold)

    match_mask = 1 << (pattern_length - 1)
    best_loc = -1

    bin_max = pattern_length + text_length
    last_rd: list[int] = []
    for d in range(pattern_length):
        # How far from loc can we stray at this error level?
        bin_min = 0
        bin_mid = bin_max
        while bin_min < bin_mid:
            if score(d, loc + bin_mid) <= threshold:
                bin_min = bin_mid
            else:
                bin_max = bin_mid
            bin_mid = (bin_max - bin_min) // 2 + bin_min
        # The window only shrinks as errors grow.
        bin_max = bin_mid
        start = max(1, loc - bin_mid + 1)
        finish = min(loc + bin_mid, text_length) + pattern_length

        rd = [0] * (finish + 2)
        rd[finish + 1] = (1 << d) - 1
        j = finish
        while j >= start:
            char_match = alphabet.get(text[j - 1], 0) if j <= text_length else 0
            if d == 0:
                # First pass: exact match.
                rd[j] = ((rd[j + 1] << 1) | 1) & char_match
            else:
                # Subsequent passes: substitution, insertion, deletion.
                rd[j] = (
                    (((rd[j + 1] << 1) | 1) & char_match)
                    | (((last_rd[j + 1] | last_rd[j]) << 1) | 1)
                    | last_rd[j + 1]
                )
            if rd[j] & match_mask:
                candidate = score(d, j - 1)
                if candidate <= threshold:
                    threshold = candidate
                    best_loc = j - 1
                    if best_loc > loc:
                        # Past loc: don't stray further from it on the left.
                        start = max(1, 2 * loc - best_loc)
                    else:
                        # Already before loc, downhill from here on.
                        break
            j -= 1

        # No hope for a (better) match at greater error levels.
        if score(d + 1, loc) > threshold:
            break
        last_rd = rd

    return best_loc
