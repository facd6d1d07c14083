"""Command-line interface for Phrase Listener.

WHY: Tuning thresholds and debugging admission decisions is much easier
with a quick way to run the matcher on two strings, or to replay a
recorded stream of service frames and see which record was accepted.

HOW: argparse with two subcommands:
  match  - run locate() on TEXT and PATTERN and print the index
  replay - feed a file of service frames (one per line) through a
           listening session and print the accepted utterance
Status messages go to stderr; results go to stdout.

RULES:
- Exit 0 on success, 1 when a replay ends with no result or input files
  are missing, 2 when the matcher rejects its input (pattern too long)
- replay phrases come from --phrase (repeatable) and --phrases-file,
  merged and de-duplicated in that order
- Blank lines in the frames file are skipped
- --verbose enables DEBUG logging (admission decisions per record)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from phrase_listener.channel.pump import MessageStreamChannel, drive_session
from phrase_listener.config import MATCH_DISTANCE, MATCH_MAX_BITS, MATCH_THRESHOLD, STABILITY_THRESHOLD
from phrase_listener.core.fuzzy import InvalidInputError, MatchConfig, PatternTooLongError, locate
from phrase_listener.core.phrases import dedupe_phrases, load_phrases
from phrase_listener.session.listener import SpeechListener


def _status(msg: str) -> None:
    """Print a status message to stderr (stdout stays pipeable)."""
    print(msg, file=sys.stderr, flush=True)


def _match_config(args: argparse.Namespace) -> MatchConfig:
    return MatchConfig(
        threshold=args.threshold,
        max_distance=args.distance,
        max_bits=MATCH_MAX_BITS,
    )


def _run_match(args: argparse.Namespace) -> int:
    try:
        index = locate(args.text, args.pattern, args.loc, _match_config(args))
    except PatternTooLongError as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 2
    print(index)
    return 0


def _load_replay_phrases(args: argparse.Namespace) -> List[str]:
    phrases: List[str] = list(args.phrase or [])
    if args.phrases_file:
        phrases.extend(load_phrases(args.phrases_file))
    return dedupe_phrases(phrases)


def _run_replay(args: argparse.Namespace) -> int:
    frames_path = Path(args.frames_file)
    if not frames_path.is_file():
        print("Error: File not found: {}".format(frames_path), file=sys.stderr)
        return 1
    if args.phrases_file and not Path(args.phrases_file).is_file():
        print("Error: File not found: {}".format(args.phrases_file), file=sys.stderr)
        return 1

    phrases = _load_replay_phrases(args)
    frames = [
        line for line in frames_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    _status("Replaying {} frame(s) against {} phrase(s)...".format(len(frames), len(phrases)))

    listener = SpeechListener(
        match_config=_match_config(args),
        stability_threshold=args.stability_threshold,
    )
    session = listener.start_session(phrases)
    try:
        utterance = drive_session(listener, session, MessageStreamChannel(frames))
    except (PatternTooLongError, InvalidInputError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        return 2

    if utterance is None:
        _status("No result (session {}).".format(session.status.value))
        return 1

    _status("Accepted transcript: {!r}".format(session.state.transcript))
    print(utterance)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="phrase_listener",
        description="Fuzzy phrase matching and admission of streamed "
                    "speech transcription results.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log admission decisions and session events to stderr.",
    )

    # Thresholds shared by both subcommands
    tuning = argparse.ArgumentParser(add_help=False)
    tuning.add_argument(
        "--threshold",
        type=float,
        default=MATCH_THRESHOLD,
        help="Match threshold, 0.0 = exact only, 1.0 = very loose (default: %(default)s).",
    )
    tuning.add_argument(
        "--distance",
        type=int,
        default=MATCH_DISTANCE,
        help="Characters from the expected location that add 1.0 to a score "
             "(default: %(default)s).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    match = subparsers.add_parser(
        "match",
        parents=[tuning],
        help="Locate PATTERN approximately in TEXT and print the index (-1 = none).",
    )
    match.add_argument("text", help="Text to search.")
    match.add_argument("pattern", help="Pattern to look for.")
    match.add_argument(
        "--loc",
        type=int,
        default=0,
        help="Expected location of the pattern (default: %(default)s).",
    )
    match.set_defaults(handler=_run_match)

    replay = subparsers.add_parser(
        "replay",
        parents=[tuning],
        help="Replay recorded service frames through a listening session.",
    )
    replay.add_argument("frames_file", help="File with one service frame per line.")
    replay.add_argument(
        "--phrase",
        action="append",
        default=None,
        help="Expected phrase. Can be specified multiple times.",
    )
    replay.add_argument(
        "--phrases-file",
        default=None,
        help="File with one expected phrase per line ('#' comments allowed).",
    )
    replay.add_argument(
        "--stability-threshold",
        type=float,
        default=STABILITY_THRESHOLD,
        help="Stability an interim fuzzy match must exceed (default: %(default)s).",
    )
    replay.set_defaults(handler=_run_replay)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    - Always exits via sys.exit with the handler's code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(args.handler(args))


if __name__ == "__main__":
    main()
