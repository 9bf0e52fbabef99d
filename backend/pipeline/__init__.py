"""Pipeline package for chat orchestration

This package contains:
- orchestrator: ConversationOrchestrator, the per-turn state machine
- transport: projection of orchestrator events onto the SSE stream protocol
"""

from .orchestrator import (
    Completed,
    ConversationOrchestrator,
    ConversationState,
    Failed,
    Fragment,
    StateChanged,
)
from .transport import StreamEvent, format_sse, project_events

__all__ = [
    "Completed",
    "ConversationOrchestrator",
    "ConversationState",
    "Failed",
    "Fragment",
    "StateChanged",
    "StreamEvent",
    "format_sse",
    "project_events",
]
