"""Listening session lifecycle.

WHY: Callers wait for utterances while records arrive on another thread.
The session package owns that synchronization.

HOW: listener.py defines SpeechListener, ListenSession and SessionStatus.
"""

from phrase_listener.session.listener import ListenSession, SessionStatus, SpeechListener

__all__ = ["ListenSession", "SessionStatus", "SpeechListener"]
