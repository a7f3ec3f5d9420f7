"""Tests for committee/events.py."""

from committee.events import CollectingSink, LoggingSink, NullSink, emit_safely
from committee.models import TokenUsage


class _ExplodingSink:
    def emit(self, event):
        raise RuntimeError("sink down")


def test_emit_safely_builds_event():
    sink = CollectingSink()
    emit_safely(
        sink, "jury", "vote", "Claude: A", token_usage=TokenUsage(1, 2, 3), round_number=2, juror_id="claude"
    )

    event = sink.events[0]
    assert event.phase == "jury"
    assert event.message_type == "vote"
    assert event.metadata.round == 2
    assert event.metadata.token_usage == TokenUsage(1, 2, 3)
    assert event.data == {"juror_id": "claude"}


def test_emit_safely_swallows_sink_errors(caplog):
    emit_safely(_ExplodingSink(), "proposing", "progress", "Collecting proposals")
    assert "Event sink failed" in caplog.text


def test_emit_safely_without_sink():
    emit_safely(None, "proposing", "progress", "nothing happens")


def test_collecting_sink_filters_by_type():
    sink = CollectingSink()
    emit_safely(sink, "proposing", "proposal", "one")
    emit_safely(sink, "judging", "evaluation", "two")
    emit_safely(sink, "proposing", "proposal", "three")
    assert [e.content for e in sink.of_type("proposal")] == ["one", "three"]


def test_null_and_logging_sinks_accept_events():
    emit_safely(NullSink(), "synthesizing", "synthesis", "done")
    emit_safely(LoggingSink(), "synthesizing", "synthesis", "done")
