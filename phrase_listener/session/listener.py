"""Listening sessions with fan-out resolution and timeouts.

WHY: Several callers may ask to "listen and wait" at the same time, but
only one utterance is being recognized at once. Every caller waiting on
that utterance must be released together, with the same result, exactly
once: on acceptance, on timeout, or when listening is cancelled.

HOW: SpeechListener keeps at most one active ListenSession. Records from
the transcription channel go through handle_record(), which runs the
admission policy under a lock. The first terminal transition wins: it
sets the session's threading.Event (releasing every await_result() call)
and runs every registered callback. Optional timers give the session a
listen deadline and then a short grace period for a final result.

RULES:
- At most one active session; start_session() while listening returns
  the in-flight session so the caller attaches to it
- Phrases are snapshotted once per session, outside the lock
- The per-session transcript is reset to "" when a session starts; the
  last accepted utterance is sticky and survives timeouts and cancels
- Terminal statuses (accepted, timed_out, cancelled, failed) are final;
  resolving twice is a no-op
- Waiters per session are capped at max_waiters (ValueError beyond)
- Callbacks and the on_session_end hook run outside the lock; a failing
  one is logged and the remaining waiters are still released
- A matcher error fails the session instead of leaving it listening
- cancel() is safe before any session has started
"""

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from phrase_listener.config import (
    FINAL_RESPONSE_TIMEOUT_S,
    MAX_WAITERS,
    STABILITY_THRESHOLD,
)
from phrase_listener.core.admission import evaluate, speech_matches
from phrase_listener.core.fuzzy import (
    DEFAULT_MATCH_CONFIG,
    InvalidInputError,
    MatchConfig,
    PatternTooLongError,
)
from phrase_listener.core.models import Decision, SessionState, TranscriptionRecord
from phrase_listener.core.phrases import PhraseSource

logger = logging.getLogger(__name__)


class SessionStatus(str, enum.Enum):
    """States of a listening session.

    RULES:
    - listening: records are being evaluated
    - accepted: a record was admitted; the utterance is available
    - timed_out: no qualifying record in time, or the service ended it
    - cancelled: stopped from outside (e.g. a stop-all signal)
    - failed: the matcher rejected a record (pattern too long, bad input)
    """

    LISTENING = "listening"
    ACCEPTED = "accepted"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.ACCEPTED,
        SessionStatus.TIMED_OUT,
        SessionStatus.CANCELLED,
        SessionStatus.FAILED,
    }
)

SessionCallback = Callable[["ListenSession"], None]


@dataclass
class ListenSession:
    """One listen-and-wait interaction, from start to a terminal status.

    RULES:
    - id: UUID4 hex string, unique per session
    - state: admission policy state (phrases, transcript, utterance)
    - stopping: True once the listen deadline passed and the session is
      waiting out the final-response grace period
    - waiters: number of await_result() calls and callbacks attached
    """

    id: str
    state: SessionState
    created_at: float
    status: SessionStatus = SessionStatus.LISTENING
    resolved_at: Optional[float] = None
    stopping: bool = False
    waiters: int = 0
    _done: threading.Event = field(default_factory=threading.Event, repr=False)
    _callbacks: List[SessionCallback] = field(default_factory=list, repr=False)
    _timer: Optional[threading.Timer] = field(default=None, repr=False)

    @property
    def phrases(self) -> List[str]:
        return self.state.phrases

    @property
    def done(self) -> bool:
        return self._done.is_set()

    @property
    def utterance(self) -> Optional[str]:
        """The accepted utterance, or None for any other outcome."""
        if self.status is SessionStatus.ACCEPTED:
            return self.state.utterance
        return None


class SpeechListener:
    """Runs listening sessions and releases everyone waiting on them.

    WHY: Callers want a simple "listen and wait" API while the channel
    delivers records asynchronously. The listener is the single
    synchronization point between them.

    HOW: A threading.Lock guards the active session and the sticky
    fields. handle_record() is the only path that mutates session state;
    _finish_locked() applies a terminal status once, and
    _release() wakes waiters and fires callbacks outside the lock.
    """

    def __init__(
        self,
        phrase_source: Optional[PhraseSource] = None,
        match_config: MatchConfig = DEFAULT_MATCH_CONFIG,
        stability_threshold: float = STABILITY_THRESHOLD,
        listen_timeout_s: Optional[float] = None,
        final_response_timeout_s: float = FINAL_RESPONSE_TIMEOUT_S,
        max_waiters: int = MAX_WAITERS,
        on_stop_listening: Optional[SessionCallback] = None,
        on_session_end: Optional[SessionCallback] = None,
    ) -> None:
        self._phrase_source = phrase_source
        self._match_config = match_config
        self._stability_threshold = stability_threshold
        self._listen_timeout_s = listen_timeout_s
        self._final_response_timeout_s = final_response_timeout_s
        self.max_waiters = max_waiters
        self._on_stop_listening = on_stop_listening
        self._on_session_end = on_session_end

        self._lock = threading.Lock()
        self._active: Optional[ListenSession] = None
        self._current_transcript = ""
        self._last_utterance: Optional[str] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def active_session(self) -> Optional[ListenSession]:
        with self._lock:
            return self._active

    @property
    def last_utterance(self) -> Optional[str]:
        """Most recently accepted utterance, across all sessions."""
        with self._lock:
            return self._last_utterance

    @property
    def current_transcript(self) -> str:
        """Normalized transcript accepted in the latest session ("" until then)."""
        with self._lock:
            return self._current_transcript

    def hears(self, phrase: str) -> bool:
        """Edge-triggered check: does the latest session's transcript contain phrase?

        RULES:
        - False while a new session is listening (transcript was reset)
        - Matcher errors propagate
        """
        return speech_matches(phrase, self.current_transcript, self._match_config)

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------

    def start_session(self, phrases: Optional[Iterable[str]] = None) -> ListenSession:
        """Start listening, or attach to the session already in flight.

        Args:
            phrases: Expected phrases for a new session. When None, the
                phrase source (if any) is snapshotted instead.

        Returns:
            The active ListenSession.
        """
        with self._lock:
            if self._active is not None:
                logger.debug("Attaching to in-flight session %s", self._active.id)
                return self._active

        if phrases is None:
            phrases = self._phrase_source.snapshot() if self._phrase_source else []
        snapshot = list(phrases)

        with self._lock:
            if self._active is not None:
                return self._active
            session = ListenSession(
                id=uuid.uuid4().hex,
                state=SessionState(phrases=snapshot),
                created_at=time.time(),
            )
            self._active = session
            self._current_transcript = ""
            if self._listen_timeout_s is not None:
                session._timer = self._start_timer(
                    self._listen_timeout_s, self._on_listen_timeout, session
                )

        logger.info("Started session %s with %d phrase(s)", session.id, len(snapshot))
        return session

    def await_result(
        self,
        session: ListenSession,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        """Block until the session resolves and return its utterance.

        RULES:
        - Returns None for timed-out and cancelled sessions
        - When timeout elapses first, the session is timed out for every
          waiter, not just this one
        - Raises ValueError when the session already has max_waiters waiters
        """
        with self._lock:
            if not session.done:
                self._reserve_waiter(session)

        if not session._done.wait(timeout):
            self.time_out(session)
            session._done.wait()
        return session.utterance

    def add_done_callback(self, session: ListenSession, callback: SessionCallback) -> None:
        """Call callback(session) once the session resolves.

        RULES:
        - Runs immediately if the session is already resolved
        - Counts against max_waiters
        """
        with self._lock:
            if not session.done:
                self._reserve_waiter(session)
                session._callbacks.append(callback)
                return
        callback(session)

    def listen(
        self,
        phrases: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        """Start (or join) a session and wait for its utterance."""
        return self.await_result(self.start_session(phrases), timeout)

    def handle_record(
        self,
        session: ListenSession,
        record: TranscriptionRecord,
    ) -> Decision:
        """Evaluate one streamed record for the session.

        RULES:
        - Records for resolved sessions are ignored ("closed" decision)
        - An accepting decision resolves the session as accepted
        - Matcher errors resolve the session as failed (waiters get None,
          the next start_session() starts fresh) and then propagate
        """
        released = None
        try:
            with self._lock:
                if session.status is not SessionStatus.LISTENING:
                    return Decision(accepted=False, reason="closed")
                try:
                    decision = evaluate(
                        record,
                        session.state,
                        self._match_config,
                        self._stability_threshold,
                    )
                except (InvalidInputError, PatternTooLongError) as exc:
                    logger.error("Matcher rejected record for session %s: %s", session.id, exc)
                    released = self._finish_locked(session, SessionStatus.FAILED)
                    raise
                if decision.accepted:
                    released = self._finish_locked(session, SessionStatus.ACCEPTED)
        finally:
            if released is not None:
                self._release(session, *released)
        return decision

    def time_out(self, session: ListenSession) -> bool:
        """Resolve the session with no result. Returns False if already resolved."""
        return self._resolve(session, SessionStatus.TIMED_OUT)

    def end_session(self, session: ListenSession) -> bool:
        """The service ended the session; treat it as a timeout."""
        logger.debug("Service ended session %s", session.id)
        return self._resolve(session, SessionStatus.TIMED_OUT)

    def cancel(self, session: Optional[ListenSession] = None) -> bool:
        """Cancel the given session, or the active one.

        RULES:
        - Safe to call when nothing is listening (returns False)
        - Waiters are released with no result
        """
        if session is None:
            session = self.active_session
            if session is None:
                logger.debug("Cancel requested with no active session")
                return False
        return self._resolve(session, SessionStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _reserve_waiter(self, session: ListenSession) -> None:
        if session.waiters >= self.max_waiters:
            raise ValueError(
                "Maximum number of waiters ({}) reached for session {}".format(
                    self.max_waiters, session.id
                )
            )
        session.waiters += 1

    def _resolve(self, session: ListenSession, status: SessionStatus) -> bool:
        with self._lock:
            released = self._finish_locked(session, status)
        if released is None:
            return False
        self._release(session, *released)
        return True

    def _finish_locked(self, session: ListenSession, status: SessionStatus):
        """Apply a terminal status. Caller must hold self._lock.

        Returns (timer, callbacks) for _release(), or None if the session
        was already resolved.
        """
        if session.status in TERMINAL_STATUSES:
            return None

        session.status = status
        session.resolved_at = time.time()
        if status is SessionStatus.ACCEPTED:
            self._last_utterance = session.state.utterance
            self._current_transcript = session.state.transcript
        if self._active is session:
            self._active = None

        timer = session._timer
        session._timer = None
        callbacks = list(session._callbacks)
        session._callbacks.clear()
        session._done.set()
        return timer, callbacks

    def _release(
        self,
        session: ListenSession,
        timer: Optional[threading.Timer],
        callbacks: List[SessionCallback],
    ) -> None:
        if timer is not None:
            timer.cancel()

        logger.info(
            "Session %s %s after %.2fs (%d waiter(s))",
            session.id,
            session.status.value,
            session.resolved_at - session.created_at,
            session.waiters,
        )

        for callback in callbacks:
            try:
                callback(session)
            except Exception:
                logger.exception("Callback failed for session %s", session.id)

        if self._on_session_end is not None:
            try:
                self._on_session_end(session)
            except Exception:
                logger.exception("on_session_end hook failed for session %s", session.id)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    @staticmethod
    def _start_timer(
        delay: float,
        fn: Callable[[ListenSession], None],
        session: ListenSession,
    ) -> threading.Timer:
        timer = threading.Timer(delay, fn, args=(session,))
        timer.daemon = True
        timer.start()
        return timer

    def _on_listen_timeout(self, session: ListenSession) -> None:
        """Listen deadline passed: ask for a final result, then give up."""
        grace = self._final_response_timeout_s
        if grace <= 0:
            self.time_out(session)
            return

        with self._lock:
            if session.status is not SessionStatus.LISTENING:
                return
            session.stopping = True

        logger.info("Session %s stopped listening; waiting %.1fs for a final result",
                    session.id, grace)
        try:
            if self._on_stop_listening is not None:
                self._on_stop_listening(session)
        finally:
            # The stop hook may already have delivered the final result.
            with self._lock:
                if session.status is SessionStatus.LISTENING:
                    session._timer = self._start_timer(
                        grace, self._on_final_response_timeout, session
                    )

    def _on_final_response_timeout(self, session: ListenSession) -> None:
        if self.time_out(session):
            logger.info("No final result for session %s", session.id)
