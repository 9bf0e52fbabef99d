"""Projection of orchestrator events onto the client stream protocol.

Client-visible events, in order:

    connected, chunk*, (complete | error)

``project_events`` guarantees that shape whatever the orchestrator does,
including raising or stopping early.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional

from core import get_logger
from pipeline.orchestrator import GENERIC_FAILURE, Completed, Failed, Fragment

logger = get_logger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    type: str  # connected | chunk | complete | error
    content: Optional[str] = None
    full_response: Optional[str] = None
    timestamp: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def connected(cls) -> "StreamEvent":
        return cls(type="connected")

    @classmethod
    def chunk(cls, text: str) -> "StreamEvent":
        return cls(type="chunk", content=text)

    @classmethod
    def complete(cls, full_response: str, timestamp: str) -> "StreamEvent":
        return cls(type="complete", full_response=full_response, timestamp=timestamp)

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(type="error", message=message)

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "chunk":
            return {"type": "chunk", "content": self.content}
        if self.type == "complete":
            return {
                "type": "complete",
                "fullResponse": self.full_response,
                "timestamp": self.timestamp,
            }
        if self.type == "error":
            return {"type": "error", "message": self.message}
        return {"type": self.type}


def project_events(events: Iterable[Any]) -> Iterator[StreamEvent]:
    """Map orchestrator events to stream events with exactly one terminator"""
    yield StreamEvent.connected()

    iterator = iter(events)
    terminated = False
    try:
        for event in iterator:
            if terminated:
                # Nothing is forwarded after the terminator
                continue
            if isinstance(event, Fragment):
                if event.text:
                    yield StreamEvent.chunk(event.text)
            elif isinstance(event, Completed):
                terminated = True
                yield StreamEvent.complete(event.turn.ai_response, event.turn.timestamp.isoformat())
            elif isinstance(event, Failed):
                terminated = True
                yield StreamEvent.error(event.message)
    except Exception as e:
        logger.error("stream_projection_failed", exc=e)
        if not terminated:
            terminated = True
            yield StreamEvent.error(GENERIC_FAILURE)
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()

    if not terminated:
        logger.error("stream_ended_without_terminator")
        yield StreamEvent.error(GENERIC_FAILURE)


def format_sse(event: StreamEvent) -> str:
    """Server-sent events framing"""
    return f"data: {json.dumps(event.to_dict())}\n\n"
