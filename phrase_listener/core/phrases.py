"""Phrase sources: where a listening session gets its expected phrases.

WHY: Each listening session compares transcripts against a list of
expected phrases ("hello", "jump", "turn left"). Where that list comes
from varies: a fixed list in code, a phrases file maintained by a user,
or a scan of a running program. The listener only needs a snapshot at
session start.

HOW: PhraseSource is a Protocol with a single snapshot() method.
StaticPhraseSource wraps an in-memory list. FilePhraseSource re-reads a
phrases file on every snapshot so edits apply to the next session.
load_phrases() parses the file format.

RULES:
- Phrases files: one phrase per line, strip whitespace, ignore blank
  lines and lines starting with '#'
- Files must be UTF-8 encoded
- snapshot() always returns a new list; callers may keep it
- Order is preserved; dedupe_phrases() removes repeats keeping the first
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Protocol


class PhraseSource(Protocol):
    """Anything that can supply the current list of expected phrases."""

    def snapshot(self) -> List[str]:
        ...


def load_phrases(path: str | Path) -> list[str]:
    """Load expected phrases from a text file.

    Args:
        path: Path to the phrases text file.

    Returns:
        List of phrase strings, in file order.
    """
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    phrases: list[str] = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        phrases.append(stripped)
    return phrases


def dedupe_phrases(phrases: Iterable[str]) -> list[str]:
    """Remove repeated phrases while preserving order."""
    seen: set = set()
    unique: list[str] = []
    for phrase in phrases:
        if phrase not in seen:
            seen.add(phrase)
            unique.append(phrase)
    return unique


class StaticPhraseSource:
    """A fixed, in-memory phrase list."""

    def __init__(self, phrases: Iterable[str] = ()) -> None:
        self._phrases = list(phrases)

    def snapshot(self) -> List[str]:
        return list(self._phrases)


class FilePhraseSource:
    """Phrases read from a file at every snapshot.

    RULES:
    - A missing file raises FileNotFoundError at snapshot time
    - Repeated phrases are removed
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def snapshot(self) -> List[str]:
        return dedupe_phrases(load_phrases(self.path))
