"""Unit tests for listening sessions, fan-out release and timeouts.

WHY: The listener is the synchronization point between callers waiting
for an utterance and the thread delivering records. A double release,
a waiter left hanging, or a timeout that clobbers the last utterance
would all show up as flaky, hard-to-reproduce behavior.

HOW: Tests are organized by concern:
  - TestSessionStart: one active session, phrase snapshots, reset fields
  - TestAcceptance: records resolve the session and update sticky fields
  - TestFanOut: every waiter and callback sees the same outcome once
  - TestTimeouts: caller timeouts, listen deadline and grace period
  - TestCancel: stop signals with and without a session
  - TestWaiterCapacity: the per-session waiter cap
  - TestErrors: matcher errors fail the session instead of jamming it

RULES:
- Each test creates its own SpeechListener
- Threads are always joined with a timeout so a bug fails instead of hanging
- Timer-based tests use short timeouts (tens of milliseconds)
"""

from __future__ import annotations

import logging
import threading
import time
from unittest.mock import MagicMock

import pytest

from phrase_listener.core.fuzzy import PatternTooLongError
from phrase_listener.core.models import TranscriptionRecord
from phrase_listener.core.phrases import StaticPhraseSource
from phrase_listener.session.listener import SessionStatus, SpeechListener


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_listener(**kwargs) -> SpeechListener:
    """Create a SpeechListener with optional overrides."""
    return SpeechListener(**kwargs)


def _final(transcript: str) -> TranscriptionRecord:
    return TranscriptionRecord(transcript=transcript, is_final=True)


def _interim(transcript: str, stability: float) -> TranscriptionRecord:
    return TranscriptionRecord(transcript=transcript, stability=stability)


def _wait_in_thread(listener, session, results, timeout=None) -> threading.Thread:
    thread = threading.Thread(
        target=lambda: results.append(listener.await_result(session, timeout)),
        daemon=True,
    )
    thread.start()
    return thread


def _wait_for_waiters(session, count, timeout=2.0) -> None:
    """Spin until `count` waiters are attached to session."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if session.waiters >= count:
            return
        time.sleep(0.005)
    raise AssertionError("waiters never attached")


# ---------------------------------------------------------------------------
# TestSessionStart
# ---------------------------------------------------------------------------


class TestSessionStart:
    """start_session() creates at most one active session."""

    def test_new_session_is_listening(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        assert session.status is SessionStatus.LISTENING
        assert session.phrases == ["cat"]
        assert listener.active_session is session
        assert not session.done

    def test_second_start_attaches(self):
        listener = _make_listener()
        first = listener.start_session(["cat"])
        second = listener.start_session(["dog"])
        assert second is first
        assert second.phrases == ["cat"]

    def test_new_session_after_resolution(self):
        listener = _make_listener()
        first = listener.start_session(["cat"])
        listener.handle_record(first, _final("cat"))
        second = listener.start_session(["dog"])
        assert second is not first
        assert second.id != first.id

    def test_phrase_source_snapshot_once_per_session(self):
        source = MagicMock()
        source.snapshot.return_value = ["cat", "dog"]
        listener = _make_listener(phrase_source=source)
        session = listener.start_session()
        listener.start_session()
        assert session.phrases == ["cat", "dog"]
        source.snapshot.assert_called_once()

    def test_explicit_phrases_skip_source(self):
        source = MagicMock()
        listener = _make_listener(phrase_source=source)
        session = listener.start_session(["bird"])
        assert session.phrases == ["bird"]
        source.snapshot.assert_not_called()

    def test_no_source_means_no_phrases(self):
        listener = _make_listener()
        assert listener.start_session().phrases == []

    def test_phrase_list_is_copied(self):
        phrases = ["cat"]
        listener = _make_listener()
        session = listener.start_session(phrases)
        phrases.append("dog")
        assert session.phrases == ["cat"]

    def test_start_resets_current_transcript(self):
        listener = _make_listener()
        first = listener.start_session(["cat"])
        listener.handle_record(first, _final("cat"))
        assert listener.current_transcript == "cat"
        listener.start_session(["cat"])
        assert listener.current_transcript == ""
        assert listener.last_utterance == "cat"


# ---------------------------------------------------------------------------
# TestAcceptance
# ---------------------------------------------------------------------------


class TestAcceptance:
    """Accepted records resolve the session and update sticky fields."""

    def test_accept_resolves_session(self):
        listener = _make_listener()
        session = listener.start_session(["kitty cat"])
        decision = listener.handle_record(session, _interim("hello kitty cat", 0.9))
        assert decision.accepted
        assert session.status is SessionStatus.ACCEPTED
        assert session.done
        assert session.utterance == "kitty cat"
        assert listener.active_session is None
        assert listener.last_utterance == "kitty cat"
        assert listener.current_transcript == "hello kitty cat"

    def test_deferred_record_keeps_listening(self):
        listener = _make_listener()
        session = listener.start_session(["kitty cat"])
        decision = listener.handle_record(session, _interim("hello kitty cat", 0.5))
        assert not decision.accepted
        assert session.status is SessionStatus.LISTENING
        assert session.state.last_candidate == "hello kitty cat"
        assert listener.last_utterance is None

    def test_records_after_acceptance_are_closed(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        listener.handle_record(session, _final("cat"))
        decision = listener.handle_record(session, _final("dog"))
        assert decision.reason == "closed"
        assert session.utterance == "cat"
        assert listener.last_utterance == "cat"

    def test_await_after_resolution_returns_immediately(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        listener.handle_record(session, _final("cat"))
        assert listener.await_result(session, timeout=0) == "cat"

    def test_hears_is_edge_triggered(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        assert not listener.hears("cat")
        listener.handle_record(session, _final("Cat!"))
        assert listener.hears("cat")
        listener.start_session(["cat"])
        assert not listener.hears("cat")

    def test_hears_uses_full_transcript(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        listener.handle_record(session, _final("my cat is hungry"))
        assert listener.last_utterance == "cat"
        assert listener.hears("hungry")

    def test_on_session_end_called(self):
        ended = MagicMock()
        listener = _make_listener(on_session_end=ended)
        session = listener.start_session(["cat"])
        listener.handle_record(session, _final("cat"))
        ended.assert_called_once_with(session)

    def test_failing_session_end_hook_keeps_acceptance(self, caplog):
        ended = MagicMock(side_effect=RuntimeError("boom"))
        listener = _make_listener(on_session_end=ended)
        session = listener.start_session(["cat"])
        with caplog.at_level(logging.ERROR, logger="phrase_listener.session.listener"):
            decision = listener.handle_record(session, _final("cat"))
        assert decision.accepted
        assert session.status is SessionStatus.ACCEPTED
        assert listener.last_utterance == "cat"
        assert "on_session_end hook failed" in caplog.text


# ---------------------------------------------------------------------------
# TestFanOut
# ---------------------------------------------------------------------------


class TestFanOut:
    """Every waiter on a session is released once, with the same outcome."""

    def test_two_waiters_get_same_utterance(self):
        listener = _make_listener()
        session = listener.start_session(["kitty cat"])
        results = []
        threads = [_wait_in_thread(listener, session, results) for _ in range(2)]
        _wait_for_waiters(session, 2)

        listener.handle_record(session, _interim("hello kitty cat", 0.9))
        for thread in threads:
            thread.join(timeout=2)
            assert not thread.is_alive()

        assert results == ["kitty cat", "kitty cat"]

    def test_attached_caller_shares_session(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        results = []
        first = _wait_in_thread(listener, session, results)
        second = _wait_in_thread(listener, listener.start_session(["dog"]), results)
        _wait_for_waiters(session, 2)

        listener.handle_record(session, _final("cat"))
        first.join(timeout=2)
        second.join(timeout=2)
        assert results == ["cat", "cat"]

    def test_callbacks_run_once(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        callback = MagicMock()
        listener.add_done_callback(session, callback)

        listener.handle_record(session, _final("cat"))
        listener.time_out(session)
        listener.cancel(session)

        callback.assert_called_once_with(session)
        assert session.status is SessionStatus.ACCEPTED

    def test_failing_callback_does_not_block_others(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        listener.add_done_callback(session, broken)
        listener.add_done_callback(session, healthy)

        listener.handle_record(session, _final("cat"))
        healthy.assert_called_once_with(session)

    def test_callback_on_resolved_session_runs_immediately(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        listener.time_out(session)
        callback = MagicMock()
        listener.add_done_callback(session, callback)
        callback.assert_called_once_with(session)

    def test_resolving_twice_is_a_noop(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        assert listener.time_out(session) is True
        assert listener.time_out(session) is False
        assert listener.end_session(session) is False
        assert session.status is SessionStatus.TIMED_OUT


# ---------------------------------------------------------------------------
# TestTimeouts
# ---------------------------------------------------------------------------


class TestTimeouts:
    """Timeouts resolve every waiter with no result."""

    def test_caller_timeout_returns_none(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        assert listener.await_result(session, timeout=0.05) is None
        assert session.status is SessionStatus.TIMED_OUT
        assert listener.active_session is None

    def test_timeout_keeps_previous_utterance(self):
        listener = _make_listener()
        first = listener.start_session(["cat"])
        listener.handle_record(first, _final("cat"))

        assert listener.listen(["dog"], timeout=0.05) is None
        assert listener.last_utterance == "cat"
        assert listener.current_transcript == ""

    def test_caller_timeout_releases_other_waiters(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        results = []
        other = _wait_in_thread(listener, session, results)
        _wait_for_waiters(session, 1)

        assert listener.await_result(session, timeout=0.05) is None
        other.join(timeout=2)
        assert results == [None]

    def test_service_ended_session(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        assert listener.end_session(session) is True
        assert session.status is SessionStatus.TIMED_OUT
        assert session.utterance is None

    def test_listen_deadline_then_grace_period(self):
        stop = MagicMock()
        listener = _make_listener(
            listen_timeout_s=0.02,
            final_response_timeout_s=0.02,
            on_stop_listening=stop,
        )
        session = listener.start_session(["cat"])
        assert listener.await_result(session, timeout=2) is None
        assert session.status is SessionStatus.TIMED_OUT
        assert session.stopping
        stop.assert_called_once_with(session)

    def test_final_result_during_grace_period_is_accepted(self):
        listener = _make_listener(
            listen_timeout_s=0.02,
            final_response_timeout_s=1.0,
            on_stop_listening=lambda s: listener.handle_record(s, _final("cat")),
        )
        session = listener.start_session(["cat"])
        assert listener.await_result(session, timeout=2) == "cat"
        assert session.status is SessionStatus.ACCEPTED

    def test_no_grace_period_times_out_directly(self):
        stop = MagicMock()
        listener = _make_listener(
            listen_timeout_s=0.02,
            final_response_timeout_s=0,
            on_stop_listening=stop,
        )
        session = listener.start_session(["cat"])
        assert listener.await_result(session, timeout=2) is None
        assert session.status is SessionStatus.TIMED_OUT
        stop.assert_not_called()

    def test_acceptance_cancels_listen_timer(self):
        stop = MagicMock()
        listener = _make_listener(listen_timeout_s=0.05, on_stop_listening=stop)
        session = listener.start_session(["cat"])
        listener.handle_record(session, _final("cat"))
        time.sleep(0.1)
        stop.assert_not_called()
        assert session.status is SessionStatus.ACCEPTED


# ---------------------------------------------------------------------------
# TestCancel
# ---------------------------------------------------------------------------


class TestCancel:
    """cancel() forces the active session to a no-result outcome."""

    def test_cancel_without_session(self):
        listener = _make_listener()
        assert listener.cancel() is False

    def test_cancel_active_session_releases_waiters(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        results = []
        thread = _wait_in_thread(listener, session, results)
        _wait_for_waiters(session, 1)

        assert listener.cancel() is True
        thread.join(timeout=2)
        assert results == [None]
        assert session.status is SessionStatus.CANCELLED
        assert listener.active_session is None

    def test_cancel_keeps_last_utterance(self):
        listener = _make_listener()
        first = listener.start_session(["cat"])
        listener.handle_record(first, _final("cat"))
        listener.start_session(["dog"])
        listener.cancel()
        assert listener.last_utterance == "cat"

    def test_records_after_cancel_are_closed(self):
        listener = _make_listener()
        session = listener.start_session(["cat"])
        listener.cancel(session)
        assert listener.handle_record(session, _final("cat")).reason == "closed"
        assert listener.last_utterance is None


# ---------------------------------------------------------------------------
# TestWaiterCapacity
# ---------------------------------------------------------------------------


class TestWaiterCapacity:
    """Each session accepts at most max_waiters waiters."""

    def test_exceeding_capacity_raises(self):
        listener = _make_listener(max_waiters=1)
        session = listener.start_session(["cat"])
        listener.add_done_callback(session, MagicMock())
        with pytest.raises(ValueError, match="Maximum number of waiters"):
            listener.await_result(session, timeout=0.01)
        assert session.status is SessionStatus.LISTENING

    def test_resolved_session_does_not_count(self):
        listener = _make_listener(max_waiters=1)
        session = listener.start_session(["cat"])
        listener.add_done_callback(session, MagicMock())
        listener.handle_record(session, _final("cat"))
        assert listener.await_result(session) == "cat"


# ---------------------------------------------------------------------------
# TestErrors
# ---------------------------------------------------------------------------


class TestErrors:
    """Matcher errors fail the session, then propagate."""

    def test_pattern_too_long_fails_session(self):
        listener = _make_listener()
        session = listener.start_session(["x" * 40])
        with pytest.raises(PatternTooLongError):
            listener.handle_record(session, _interim("something else", 0.9))
        assert session.status is SessionStatus.FAILED
        assert session.done
        assert session.utterance is None
        assert listener.active_session is None

    def test_new_session_after_matcher_error(self):
        listener = _make_listener()
        failed = listener.start_session(["x" * 40])
        with pytest.raises(PatternTooLongError):
            listener.handle_record(failed, _final("something else"))
        fresh = listener.start_session(["cat"])
        assert fresh is not failed
        listener.handle_record(fresh, _final("cat"))
        assert listener.last_utterance == "cat"

    def test_matcher_error_releases_waiters_and_callbacks(self):
        ended = MagicMock()
        listener = _make_listener(on_session_end=ended)
        session = listener.start_session(["x" * 40])
        callback = MagicMock()
        listener.add_done_callback(session, callback)
        results = []
        thread = _wait_in_thread(listener, session, results)
        _wait_for_waiters(session, 2)

        with pytest.raises(PatternTooLongError):
            listener.handle_record(session, _final("something else"))
        thread.join(timeout=2)
        assert results == [None]
        callback.assert_called_once_with(session)
        ended.assert_called_once_with(session)

    def test_static_source_integration(self):
        listener = _make_listener(phrase_source=StaticPhraseSource(["jump"]))
        session = listener.start_session()
        listener.handle_record(session, _interim("Jump.", 0.0))
        assert session.utterance == "jump"
