"""Conversation orchestrator

Runs one chat turn as an explicit state machine:

    IDLE -> AWAITING_MODEL_ROUND1 -> DISPATCHING_TOOLS -> AWAITING_MODEL_ROUND2 -> COMPLETED
                                  \\-> STREAMING_DIRECT ----------------------/
    any state -> FAILED (context or history failures only)

``converse`` is a generator of orchestrator events (``StateChanged``,
``Fragment``, ``Completed``, ``Failed``). It always ends with exactly one
``Completed`` or ``Failed``. Model outages and undecodable model output are
absorbed into scripted replies; only problems with the user's own data end the
turn with ``Failed``.
"""

import json
import time
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import config
from core import (
    get_logger,
    FatalConversationError,
    LLMUnavailableError,
    LLMUnparsableError,
)
from financial_context import build_financial_context, render_financial_context
from llm.models import ConversationTurn, ModelReply, ToolCallRequest, ToolOutcome
from llm.prompt_manager import (
    EMPTY_REPLY_FALLBACK,
    FALLBACK_APOLOGY,
    INTERRUPTED_NOTICE,
    STRICT_FORMAT_INSTRUCTION,
    build_system_prompt,
    build_tool_results_message,
    summarize_outcomes,
)
from llm.tools import TOOL_REGISTRY, ToolRegistry

logger = get_logger(__name__)

GENERIC_FAILURE = "Something went wrong while processing your message. Please try again."


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL_ROUND1 = "awaiting_model_round1"
    DISPATCHING_TOOLS = "dispatching_tools"
    AWAITING_MODEL_ROUND2 = "awaiting_model_round2"
    STREAMING_DIRECT = "streaming_direct"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class StateChanged:
    state: ConversationState


@dataclass(frozen=True)
class Fragment:
    text: str


@dataclass(frozen=True)
class Completed:
    turn: ConversationTurn


@dataclass(frozen=True)
class Failed:
    message: str


OrchestratorEvent = Union[StateChanged, Fragment, Completed, Failed]


def split_into_chunks(text: str, size: int) -> List[str]:
    """Fixed-size slices whose concatenation is exactly ``text``"""
    size = max(1, size)
    return [text[i : i + size] for i in range(0, len(text), size)]


def _canonical_arguments(raw: Any) -> str:
    try:
        return json.dumps(raw, sort_keys=True, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return repr(raw)


class ConversationOrchestrator:
    """Drives the two-round tool protocol for a single user message.

    The instance holds only injected collaborators and settings; all per-turn
    state lives inside ``converse`` so one orchestrator serves every request.
    """

    def __init__(
        self,
        gateway,
        dispatcher,
        facade,
        history_store,
        registry: ToolRegistry = TOOL_REGISTRY,
        *,
        history_window: Optional[int] = None,
        context_limit: Optional[int] = None,
        max_tool_calls: Optional[int] = None,
        chunk_size: Optional[int] = None,
        chunk_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.facade = facade
        self.history_store = history_store
        self.registry = registry
        self.history_window = history_window or config.HISTORY_WINDOW
        self.context_limit = context_limit or config.RECENT_TRANSACTIONS_LIMIT
        self.max_tool_calls = max_tool_calls or config.MAX_TOOL_CALLS_PER_ROUND
        self.chunk_size = chunk_size or config.FABRICATED_CHUNK_SIZE
        self.chunk_delay = config.FABRICATED_CHUNK_DELAY if chunk_delay is None else chunk_delay
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def converse(self, user_id, message: str, pace: bool = True) -> Iterator[OrchestratorEvent]:
        """Run one turn; ``pace=False`` replays fabricated text without delays"""
        fragments: List[str] = []
        delay = self.chunk_delay if pace else 0
        logger.info("conversation_started", user_id=user_id, message_length=len(message))

        try:
            yield StateChanged(ConversationState.AWAITING_MODEL_ROUND1)
            messages = self._initial_messages(user_id, message)
            reply, direct_text = self._round_one(messages, user_id)

            if reply is not None and reply.has_tool_calls:
                yield StateChanged(ConversationState.DISPATCHING_TOOLS)
                outcomes = self._dispatch_all(reply.tool_calls, user_id)

                yield StateChanged(ConversationState.AWAITING_MODEL_ROUND2)
                round_two = messages + [
                    {"role": "assistant", "content": reply.content or ""},
                    {"role": "user", "content": build_tool_results_message(outcomes)},
                ]
                yield from self._round_two(round_two, outcomes, fragments, user_id, delay)
            else:
                yield StateChanged(ConversationState.STREAMING_DIRECT)
                yield from self._fabricate(direct_text, fragments, delay)

            turn = ConversationTurn(
                user_message=message,
                ai_response="".join(fragments),
                timestamp=self._clock(),
            )
            self._persist(user_id, turn)

            yield StateChanged(ConversationState.COMPLETED)
            logger.info("conversation_completed", user_id=user_id, response_length=len(turn.ai_response))
            yield Completed(turn)

        except GeneratorExit:
            logger.info("conversation_cancelled", user_id=user_id, emitted=len(fragments))
            raise
        except FatalConversationError as e:
            logger.error("conversation_failed", exc=e, user_id=user_id, stage=e.stage)
            yield StateChanged(ConversationState.FAILED)
            yield Failed(e.message)
        except Exception as e:
            logger.error("conversation_failed", exc=e, user_id=user_id, stage="unexpected")
            yield StateChanged(ConversationState.FAILED)
            yield Failed(GENERIC_FAILURE)

    def answer(self, user_id, message: str) -> ConversationTurn:
        """Run a turn to completion and return it (buffered mode)"""
        for event in self.converse(user_id, message, pace=False):
            if isinstance(event, Completed):
                return event.turn
            if isinstance(event, Failed):
                raise FatalConversationError(event.message, stage="conversation")
        raise FatalConversationError(GENERIC_FAILURE, stage="conversation")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _initial_messages(self, user_id, message: str) -> List[Dict[str, Any]]:
        try:
            context = build_financial_context(self.facade, user_id, self.context_limit)
        except Exception as e:
            raise FatalConversationError(
                "Could not load your financial data. Please try again.", stage="context"
            ) from e
        try:
            history = self.history_store.get_recent_history(user_id, self.history_window)
        except Exception as e:
            raise FatalConversationError(
                "Could not load your conversation history. Please try again.", stage="history"
            ) from e

        messages: List[Dict[str, Any]] = [
            {
                "role": "system",
                "content": build_system_prompt(render_financial_context(context), self._clock()),
            }
        ]
        # Stored most-recent-first, replayed oldest-first
        for turn in reversed(history):
            messages.append({"role": "user", "content": turn.user_message})
            messages.append({"role": "assistant", "content": turn.ai_response})
        messages.append({"role": "user", "content": message})
        return messages

    def _round_one(self, messages, user_id) -> Tuple[Optional[ModelReply], str]:
        """Return (reply, direct_text). reply is None when a scripted answer replaces it."""
        tools = self.registry.function_tools()
        try:
            reply = self.gateway.complete(messages, tools)
        except LLMUnavailableError as e:
            logger.warning("llm_round1_unavailable", user_id=user_id, reason=e.reason)
            return None, FALLBACK_APOLOGY
        except LLMUnparsableError as e:
            logger.warning("llm_round1_unparsable", user_id=user_id, error=e.message)
            reply = None

        if reply is None:
            strict = messages + [{"role": "system", "content": STRICT_FORMAT_INSTRUCTION}]
            try:
                reply = self.gateway.complete(strict, tools)
            except LLMUnavailableError as e:
                logger.warning("llm_round1_retry_unavailable", user_id=user_id, reason=e.reason)
                return None, FALLBACK_APOLOGY
            except LLMUnparsableError as e:
                logger.warning("llm_round1_retry_unparsable", user_id=user_id, error=e.message)
                return None, e.raw_content.strip() or FALLBACK_APOLOGY

        direct_text = reply.content if reply.content.strip() else EMPTY_REPLY_FALLBACK
        return reply, direct_text

    def _dispatch_all(
        self, requests: List[ToolCallRequest], user_id
    ) -> List[Tuple[str, ToolOutcome]]:
        """Run tool calls sequentially in model order; duplicates and excess calls are skipped"""
        outcomes: List[Tuple[str, ToolOutcome]] = []
        seen = set()
        executed = 0

        for request in requests:
            key = (request.name, _canonical_arguments(request.raw_arguments))
            if key in seen:
                outcome = ToolOutcome.fail(
                    f"Skipped duplicate call to {request.name}: an identical call was "
                    "already executed in this turn."
                )
            elif executed >= self.max_tool_calls:
                outcome = ToolOutcome.fail(
                    f"Skipped {request.name}: tool call limit of {self.max_tool_calls} "
                    "per turn reached."
                )
            else:
                seen.add(key)
                executed += 1
                outcome = self.dispatcher.dispatch(request.name, request.raw_arguments, user_id)
            outcomes.append((request.name, outcome))

        logger.info(
            "tools_dispatched",
            user_id=user_id,
            requested=len(requests),
            executed=executed,
            failed=sum(1 for _, o in outcomes if not o.success),
        )
        return outcomes

    def _round_two(self, messages, outcomes, fragments: List[str], user_id, delay: float):
        try:
            with closing(self.gateway.complete_stream(messages)) as stream:
                for text in stream:
                    fragments.append(text)
                    yield Fragment(text)
        except (LLMUnavailableError, LLMUnparsableError) as e:
            logger.warning(
                "llm_round2_failed",
                user_id=user_id,
                error=e.message,
                emitted=len(fragments),
            )
            if fragments:
                yield from self._fabricate(INTERRUPTED_NOTICE, fragments, delay)
            else:
                yield from self._fabricate(
                    summarize_outcomes(outcomes) + "\n\n" + FALLBACK_APOLOGY, fragments, delay
                )
            return

        if not fragments:
            yield from self._fabricate(summarize_outcomes(outcomes), fragments, delay)

    def _fabricate(self, text: str, fragments: List[str], delay: float) -> Iterator[Fragment]:
        """Replay finished text as a paced stream of fixed-size chunks"""
        chunks = split_into_chunks(text, self.chunk_size)
        for index, chunk in enumerate(chunks):
            if index and delay:
                self._sleep(delay)
            fragments.append(chunk)
            yield Fragment(chunk)

    def _persist(self, user_id, turn: ConversationTurn) -> None:
        try:
            self.history_store.append(user_id, turn)
        except Exception as e:
            raise FatalConversationError(
                "Your answer could not be saved. Please try again.", stage="history"
            ) from e
