"""ConversationOrchestrator: the two-round protocol end to end with fakes."""

import pytest

from core import FatalConversationError, LLMUnavailableError, LLMUnparsableError
from fakes import reply
from llm.executor import ToolDispatcher
from llm.models import ConversationTurn
from llm.prompt_manager import (
    EMPTY_REPLY_FALLBACK,
    FALLBACK_APOLOGY,
    INTERRUPTED_NOTICE,
    STRICT_FORMAT_INSTRUCTION,
)
from llm.tools import TOOL_REGISTRY
from pipeline.orchestrator import (
    Completed,
    ConversationOrchestrator,
    ConversationState,
    Failed,
    Fragment,
    StateChanged,
    split_into_chunks,
)

USER_ID = 1


def _run(orchestrator, message="hello"):
    return list(orchestrator.converse(USER_ID, message))


def _text(events):
    return "".join(e.text for e in events if isinstance(e, Fragment))


def _states(events):
    return [e.state for e in events if isinstance(e, StateChanged)]


def _terminal(events):
    return [e for e in events if isinstance(e, (Completed, Failed))]


def test_direct_answer_is_streamed_without_round_two(orchestrator, gateway, history_store):
    gateway.replies = [reply("Hi there, how can I help?")]

    events = _run(orchestrator)

    assert _states(events) == [
        ConversationState.AWAITING_MODEL_ROUND1,
        ConversationState.STREAMING_DIRECT,
        ConversationState.COMPLETED,
    ]
    assert _text(events) == "Hi there, how can I help?"
    assert gateway.stream_calls == []
    assert isinstance(events[-1], Completed)
    assert history_store.turns[USER_ID][0].ai_response == "Hi there, how can I help?"


def test_round_one_offers_the_tool_catalog(orchestrator, gateway):
    gateway.replies = [reply("ok")]

    _run(orchestrator)

    assert gateway.complete_calls[0]["tools"] == TOOL_REGISTRY.function_tools()
    messages = gateway.complete_calls[0]["messages"]
    assert messages[0]["role"] == "system"
    assert "User's Financial Context" in messages[0]["content"]
    assert messages[-1] == {"role": "user", "content": "hello"}


def test_tool_round_executes_and_streams_final_answer(orchestrator, gateway, facade, history_store):
    gateway.replies = [reply("", ("create_category", {"name": "Pets"}))]
    gateway.streams = [["Created ", "the Pets category."]]

    events = _run(orchestrator, "make a pets category")

    assert _states(events) == [
        ConversationState.AWAITING_MODEL_ROUND1,
        ConversationState.DISPATCHING_TOOLS,
        ConversationState.AWAITING_MODEL_ROUND2,
        ConversationState.COMPLETED,
    ]
    assert [c["name"] for c in facade.categories.values()] == ["Pets"]
    assert _text(events) == "Created the Pets category."
    assert events[-1].turn.ai_response == "Created the Pets category."
    assert history_store.turns[USER_ID][0].user_message == "make a pets category"

    round_two = gateway.stream_calls[0]
    assert round_two[-2] == {"role": "assistant", "content": ""}
    assert round_two[-1]["role"] == "user"
    assert round_two[-1]["content"].startswith("Tool execution results:\ncreate_category: Success")


def test_tools_run_sequentially_in_model_order(orchestrator, gateway, facade):
    gateway.replies = [
        reply(
            "",
            ("create_category", {"name": "Pets"}),
            (
                "create_budget_with_category",
                {"category_name": "Pets", "budget_name": "Pet food", "amount": 80, "period_type": "monthly"},
            ),
        )
    ]
    gateway.streams = [["Done."]]

    _run(orchestrator)

    results = gateway.stream_calls[0][-1]["content"]
    assert 'create_category: Success - Created category "Pets"' in results
    assert 'create_budget_with_category: Success - Used existing category "Pets"' in results
    assert len(facade.categories) == 1
    assert len(facade.budgets) == 1


def test_failed_tool_is_reported_and_the_rest_still_run(orchestrator, gateway, facade):
    gateway.replies = [
        reply(
            "",
            ("add_transaction", {"amount": 5, "description": "Tea", "transaction_type": "expense"}),
            ("create_category", {"name": "Drinks"}),
        )
    ]
    gateway.streams = [["Partly done."]]

    events = _run(orchestrator)

    results = gateway.stream_calls[0][-1]["content"]
    assert "add_transaction: Failed - Invalid arguments for add_transaction" in results
    assert "create_category: Success" in results
    assert facade.transactions == {}
    assert isinstance(events[-1], Completed)


def test_duplicate_calls_are_skipped(orchestrator, gateway, facade):
    call = ("create_category", {"name": "Pets"})
    gateway.replies = [reply("", call, call)]
    gateway.streams = [["ok"]]

    _run(orchestrator)

    results = gateway.stream_calls[0][-1]["content"]
    assert "Skipped duplicate call to create_category" in results
    assert len(facade.categories) == 1
    assert sum(1 for c in facade.calls if c[0] == "create_category") == 1


def test_calls_beyond_the_limit_are_skipped(gateway, facade, history_store):
    orchestrator = ConversationOrchestrator(
        gateway, ToolDispatcher(facade), facade, history_store, max_tool_calls=2, chunk_delay=0
    )
    gateway.replies = [
        reply(
            "",
            ("create_category", {"name": "A"}),
            ("create_category", {"name": "B"}),
            ("create_category", {"name": "C"}),
        )
    ]
    gateway.streams = [["ok"]]

    _run(orchestrator)

    results = gateway.stream_calls[0][-1]["content"]
    assert "Skipped create_category: tool call limit of 2 per turn reached." in results
    assert sorted(c["name"] for c in facade.categories.values()) == ["A", "B"]


def test_round_one_outage_yields_apology(orchestrator, gateway, facade, history_store):
    gateway.replies = [LLMUnavailableError("timeout", "request timed out")]

    events = _run(orchestrator)

    assert _text(events) == FALLBACK_APOLOGY
    assert isinstance(events[-1], Completed)
    assert not facade.called("create_category")
    assert history_store.turns[USER_ID][0].ai_response == FALLBACK_APOLOGY


def test_unparsable_reply_is_retried_with_strict_instruction(orchestrator, gateway):
    gateway.replies = [LLMUnparsableError("bad json", raw_content="{oops"), reply("Recovered answer")]

    events = _run(orchestrator)

    assert len(gateway.complete_calls) == 2
    retry_messages = gateway.complete_calls[1]["messages"]
    assert retry_messages[-1] == {"role": "system", "content": STRICT_FORMAT_INSTRUCTION}
    assert _text(events) == "Recovered answer"


def test_unparsable_twice_falls_back_to_raw_content(orchestrator, gateway):
    gateway.replies = [
        LLMUnparsableError("bad json", raw_content="first"),
        LLMUnparsableError("bad json", raw_content="Here is what I found"),
    ]

    events = _run(orchestrator)

    assert _text(events) == "Here is what I found"
    assert gateway.stream_calls == []


def test_unparsable_twice_without_content_apologizes(orchestrator, gateway):
    gateway.replies = [LLMUnparsableError("bad"), LLMUnparsableError("bad")]

    assert _text(_run(orchestrator)) == FALLBACK_APOLOGY


def test_empty_reply_gets_a_fallback(orchestrator, gateway):
    gateway.replies = [reply("   ")]

    assert _text(_run(orchestrator)) == EMPTY_REPLY_FALLBACK


def test_round_two_interruption_keeps_partial_text(orchestrator, gateway):
    gateway.replies = [reply("", ("get_budgets", {}))]
    gateway.streams = [["You have ", LLMUnavailableError("connection")]]

    events = _run(orchestrator)

    assert _text(events) == "You have " + INTERRUPTED_NOTICE
    assert events[-1].turn.ai_response == "You have " + INTERRUPTED_NOTICE


def test_round_two_outage_before_any_text_summarizes_outcomes(orchestrator, gateway):
    gateway.replies = [reply("", ("create_category", {"name": "Pets"}))]
    gateway.streams = [LLMUnavailableError("timeout")]

    text = _text(_run(orchestrator))

    assert text.startswith('✓ create_category: Created category "Pets"')
    assert text.endswith(FALLBACK_APOLOGY)


def test_empty_round_two_stream_summarizes_outcomes(orchestrator, gateway):
    gateway.replies = [reply("", ("create_category", {"name": ""}))]
    gateway.streams = [[]]

    text = _text(_run(orchestrator))

    assert text.startswith("✗ create_category: Invalid arguments for create_category")


def test_history_is_replayed_oldest_first_within_window(gateway, facade, history_store):
    for i in range(4):
        history_store.append(USER_ID, ConversationTurn(f"question {i}", f"answer {i}"))
    orchestrator = ConversationOrchestrator(
        gateway, ToolDispatcher(facade), facade, history_store, history_window=2, chunk_delay=0
    )
    gateway.replies = [reply("ok")]

    _run(orchestrator, "latest")

    messages = gateway.complete_calls[0]["messages"]
    assert [m["content"] for m in messages[1:]] == [
        "question 2",
        "answer 2",
        "question 3",
        "answer 3",
        "latest",
    ]


def test_context_is_rebuilt_for_every_turn(orchestrator, gateway):
    gateway.replies = [reply("", ("create_category", {"name": "Pets"})), reply("second")]
    gateway.streams = [["first"]]

    _run(orchestrator, "one")
    _run(orchestrator, "two")

    first_prompt = gateway.complete_calls[0]["messages"][0]["content"]
    second_prompt = gateway.complete_calls[1]["messages"][0]["content"]
    assert "Pets" not in first_prompt
    assert "Pets (ID:" in second_prompt
    # The first turn is replayed in the second
    assert gateway.complete_calls[1]["messages"][1:3] == [
        {"role": "user", "content": "one"},
        {"role": "assistant", "content": "first"},
    ]


def test_history_write_failure_fails_the_turn(orchestrator, gateway, history_store):
    gateway.replies = [reply("answer")]
    history_store.fail_append = RuntimeError("disk full")

    events = _run(orchestrator)

    assert len(_terminal(events)) == 1
    assert isinstance(events[-1], Failed)
    assert _states(events)[-1] == ConversationState.FAILED
    assert "could not be saved" in events[-1].message


def test_history_read_failure_fails_the_turn(orchestrator, gateway, history_store):
    history_store.fail_read = RuntimeError("db down")

    events = _run(orchestrator)

    assert isinstance(events[-1], Failed)
    assert gateway.complete_calls == []


def test_context_failure_fails_the_turn(orchestrator, gateway, facade):
    facade.fail_on["get_spending_summary"] = RuntimeError("db down")

    events = _run(orchestrator)

    assert isinstance(events[-1], Failed)
    assert events[-1].message == "Could not load your financial data. Please try again."
    assert gateway.complete_calls == []


def test_unexpected_error_fails_with_generic_message(orchestrator, gateway):
    gateway.replies = [ValueError("surprise")]

    events = _run(orchestrator)

    assert isinstance(events[-1], Failed)
    assert len(_terminal(events)) == 1


def test_fabricated_stream_is_paced_in_fixed_chunks(gateway, facade, history_store):
    delays = []
    orchestrator = ConversationOrchestrator(
        gateway,
        ToolDispatcher(facade),
        facade,
        history_store,
        chunk_size=10,
        chunk_delay=0.05,
        sleep=delays.append,
    )
    text = "x" * 25
    gateway.replies = [reply(text)]

    events = _run(orchestrator)

    fragments = [e.text for e in events if isinstance(e, Fragment)]
    assert fragments == ["x" * 10, "x" * 10, "x" * 5]
    assert delays == [0.05, 0.05]


def test_answer_returns_the_completed_turn(orchestrator, gateway):
    gateway.replies = [reply("buffered")]

    turn = orchestrator.answer(USER_ID, "hi")

    assert turn.user_message == "hi"
    assert turn.ai_response == "buffered"


def test_answer_raises_on_failure(orchestrator, history_store, gateway):
    gateway.replies = [reply("answer")]
    history_store.fail_append = RuntimeError("disk full")

    with pytest.raises(FatalConversationError):
        orchestrator.answer(USER_ID, "hi")


def test_closing_the_stream_early_skips_persistence(orchestrator, gateway, history_store):
    gateway.replies = [reply("y" * 200)]

    events = orchestrator.converse(USER_ID, "hi")
    next(events)
    next(events)
    events.close()

    assert USER_ID not in history_store.turns


def test_buffered_answer_is_not_paced(gateway, facade, history_store):
    delays = []
    orchestrator = ConversationOrchestrator(
        gateway,
        ToolDispatcher(facade),
        facade,
        history_store,
        chunk_size=10,
        chunk_delay=0.05,
        sleep=delays.append,
    )
    gateway.replies = [reply("x" * 25)]

    turn = orchestrator.answer(USER_ID, "hi")

    assert turn.ai_response == "x" * 25
    assert delays == []


def test_closing_during_round_two_closes_the_model_stream(orchestrator, gateway, history_store):
    gateway.replies = [reply("", ("get_budgets", {}))]
    gateway.streams = [["part %d " % i for i in range(100)]]

    events = orchestrator.converse(USER_ID, "hi")
    for event in events:
        if isinstance(event, Fragment):
            break
    events.close()

    assert gateway.closed_streams == 1
    assert USER_ID not in history_store.turns


def test_finished_round_two_stream_is_closed(orchestrator, gateway):
    gateway.replies = [reply("", ("get_budgets", {}))]
    gateway.streams = [["Nothing ", "yet."]]

    _run(orchestrator)

    assert gateway.closed_streams == 1


def test_split_into_chunks_preserves_text():
    assert split_into_chunks("abcdefg", 3) == ["abc", "def", "g"]
    assert split_into_chunks("", 3) == []
    assert "".join(split_into_chunks("hello world", 4)) == "hello world"
