"""Value types exchanged between the gateway, dispatcher, orchestrator and
history store."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model. Arguments are untrusted."""

    name: str
    raw_arguments: Any
    call_id: Optional[str] = None


@dataclass(frozen=True)
class ToolOutcome:
    """Result of exactly one dispatcher invocation"""

    success: bool
    message: str
    data: Any = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ToolOutcome":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, data: Any = None) -> "ToolOutcome":
        return cls(success=False, message=message, data=data)


@dataclass(frozen=True)
class ModelReply:
    """Buffered model answer: narrative text plus any tool requests"""

    content: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass(frozen=True)
class ConversationTurn:
    """A completed (question, answer) pair"""

    user_message: str
    ai_response: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
