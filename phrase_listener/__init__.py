"""Phrase Listener: approximate phrase matching for streaming speech.

WHY: Voice-driven projects wait for a user to say one of a few expected
phrases. Streaming recognizers return noisy, evolving interim results, so
the client must decide in real time whether a result "counts" and which
part of it was the phrase.

HOW: Three layers: a pure Bitap fuzzy matcher (core.fuzzy), an admission
policy that judges each streamed record (core.admission), and a session
listener that resolves every waiting caller exactly once
(session.listener). The channel package decodes service frames and pumps
them into a session.

RULES:
- The matcher is pure and thread-safe
- Each listening session resolves exactly once: accepted, timed out or
  cancelled
- Transport, audio capture and UI live outside this package
"""

__version__ = "0.1.0"
