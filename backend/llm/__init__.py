"""
LLM Module - tool registry, argument validation, dispatcher and model gateway
"""

from .models import ConversationTurn, ModelReply, ToolCallRequest, ToolOutcome
from .tools import TOOL_REGISTRY, TOOLS_DEFINITIONS, ToolDescriptor, ParameterSpec
from .schemas import validate_action_arguments, validate_tool_arguments
from .executor import ToolDispatcher
from .gateway import LLMGateway
from .prompt_manager import build_system_prompt, build_tool_results_message

__all__ = [
    "ConversationTurn",
    "ModelReply",
    "ToolCallRequest",
    "ToolOutcome",
    "TOOL_REGISTRY",
    "TOOLS_DEFINITIONS",
    "ToolDescriptor",
    "ParameterSpec",
    "validate_action_arguments",
    "validate_tool_arguments",
    "ToolDispatcher",
    "LLMGateway",
    "build_system_prompt",
    "build_tool_results_message",
]
