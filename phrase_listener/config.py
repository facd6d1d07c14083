"""Configuration constants and .env loading.

WHY: Matching thresholds, stability cut-offs and listening timeouts are
tuning knobs. Keeping them in one module as plain constants makes them
easy to find and override without touching matching or session logic.

HOW: python-dotenv loads the .env file on import. Each constant reads an
environment variable with a string default and converts it with a small
helper that fails loudly on bad values.

RULES:
- MATCH_THRESHOLD: 0.0 = perfect match only, 1.0 = very loose (default 0.3)
- MATCH_DISTANCE: a match this many characters from the expected location
  adds 1.0 to its score (default 1000)
- MATCH_MAX_BITS: longest pattern the Bitap matcher accepts (default 32)
- STABILITY_THRESHOLD: interim results need stability strictly above this
  value before a fuzzy match is trusted (default 0.85)
- Timeouts are float seconds; LISTEN_TIMEOUT_S (default 10) is the
  listen-and-wait deadline, FINAL_RESPONSE_TIMEOUT_S (default 3) the grace
  period for a final result after it
- Invalid numeric overrides raise ValueError naming the variable
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip()
    try:
        return float(raw)
    except ValueError:
        raise ValueError(
            "{} must be a number, got {!r}".format(name, raw)
        ) from None


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            "{} must be an integer, got {!r}".format(name, raw)
        ) from None


# ---------------------------------------------------------------------------
# Fuzzy matching defaults
# ---------------------------------------------------------------------------

MATCH_THRESHOLD = _env_float("MATCH_THRESHOLD", "0.3")
MATCH_DISTANCE = _env_int("MATCH_DISTANCE", "1000")
MATCH_MAX_BITS = _env_int("MATCH_MAX_BITS", "32")

# ---------------------------------------------------------------------------
# Admission policy
# ---------------------------------------------------------------------------

STABILITY_THRESHOLD = _env_float("STABILITY_THRESHOLD", "0.85")

STRIPPED_PUNCTUATION = ".?!"
"""Characters removed from transcripts before comparing them to phrases."""

# ---------------------------------------------------------------------------
# Listening sessions
# ---------------------------------------------------------------------------

# Listen-and-wait deadline before asking the service for a final result.
# SpeechListener leaves the deadline off unless a host passes this value.
LISTEN_TIMEOUT_S = _env_float("LISTEN_TIMEOUT_S", "10.0")

# Grace period after listening stops, waiting for an isFinal result.
FINAL_RESPONSE_TIMEOUT_S = _env_float("FINAL_RESPONSE_TIMEOUT_S", "3.0")

MAX_WAITERS = _env_int("MAX_WAITERS", "64")
"""Maximum number of callers that may wait on one listening session."""
