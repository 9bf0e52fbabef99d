"""Projection of orchestrator events onto the client stream."""

import json
from datetime import datetime, timezone

from llm.models import ConversationTurn
from pipeline.orchestrator import (
    GENERIC_FAILURE,
    Completed,
    ConversationState,
    Failed,
    Fragment,
    StateChanged,
)
from pipeline.transport import StreamEvent, format_sse, project_events

TURN = ConversationTurn("hi", "Hello there", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


def _types(events):
    return [e.type for e in events]


def test_successful_turn_shape():
    events = list(
        project_events(
            [
                StateChanged(ConversationState.AWAITING_MODEL_ROUND1),
                Fragment("Hello "),
                Fragment("there"),
                StateChanged(ConversationState.COMPLETED),
                Completed(TURN),
            ]
        )
    )

    assert _types(events) == ["connected", "chunk", "chunk", "complete"]
    assert events[-1].to_dict() == {
        "type": "complete",
        "fullResponse": "Hello there",
        "timestamp": "2024-05-01T12:00:00+00:00",
    }


def test_failed_turn_ends_with_error():
    events = list(project_events([Fragment("partial"), Failed("Could not load your data.")]))

    assert _types(events) == ["connected", "chunk", "error"]
    assert events[-1].message == "Could not load your data."


def test_exception_becomes_single_error_event():
    def _broken():
        yield Fragment("a")
        raise RuntimeError("boom")

    events = list(project_events(_broken()))

    assert _types(events) == ["connected", "chunk", "error"]
    assert events[-1].message == GENERIC_FAILURE


def test_missing_terminator_is_reported():
    events = list(project_events([Fragment("a")]))

    assert _types(events) == ["connected", "chunk", "error"]


def test_nothing_is_forwarded_after_the_terminator():
    events = list(project_events([Completed(TURN), Fragment("late"), Failed("late")]))

    assert _types(events) == ["connected", "complete"]


def test_empty_fragments_are_dropped():
    events = list(project_events([Fragment(""), Completed(TURN)]))

    assert _types(events) == ["connected", "complete"]


def test_source_is_closed_when_consumer_stops():
    closed = []

    def _source():
        try:
            yield Fragment("a")
            yield Fragment("b")
        finally:
            closed.append(True)

    stream = project_events(_source())
    next(stream)
    next(stream)
    stream.close()

    assert closed == [True]


def test_format_sse():
    assert format_sse(StreamEvent.chunk("hi")) == 'data: {"type": "chunk", "content": "hi"}\n\n'
    assert json.loads(format_sse(StreamEvent.connected())[6:]) == {"type": "connected"}
