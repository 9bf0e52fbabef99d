"""Language-model gateway

Wraps an OpenAI-compatible chat-completions client (DeepSeek by default) and
translates everything that can go wrong on the wire into two errors:

- ``LLMUnavailableError``: timeout, connection failure, rate limit, 5xx or any
  other refusal by the service
- ``LLMUnparsableError``: the service answered but the answer cannot be decoded
"""

import json
import re
from typing import Any, Dict, Iterator, List, Optional

import openai
from openai import OpenAI

import config
from core import get_logger, LLMUnavailableError, LLMUnparsableError
from llm.models import ModelReply, ToolCallRequest

logger = get_logger(__name__)

# ```json {"action": "...", "data": {...}} ``` blocks embedded in prose
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def translate_error(exc: Exception) -> Exception:
    """Map an openai SDK exception onto the gateway failure taxonomy"""
    if isinstance(exc, openai.APITimeoutError):
        return LLMUnavailableError("timeout", "request timed out")
    if isinstance(exc, openai.APIConnectionError):
        return LLMUnavailableError("connection", "could not connect to the language model")
    if isinstance(exc, openai.RateLimitError):
        return LLMUnavailableError("rate_limited", "rate limit exceeded")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return LLMUnavailableError("server_error", f"service returned {exc.status_code}")
        return LLMUnavailableError("rejected", f"request rejected with {exc.status_code}")
    if isinstance(exc, openai.APIResponseValidationError):
        return LLMUnparsableError(f"invalid response: {exc}")
    return LLMUnavailableError("connection", str(exc))


def extract_fenced_actions(content: str):
    """Pull ``{"action": ..., "data": ...}`` blocks out of narrative content.

    Returns (remaining_content, [ToolCallRequest]). Fenced JSON without an
    ``action`` key is left in place.
    """
    requests: List[ToolCallRequest] = []

    def _replace(match):
        block = match.group(1)
        try:
            payload = json.loads(block)
        except json.JSONDecodeError:
            if '"action"' in block:
                raise LLMUnparsableError("malformed action block", raw_content=content)
            return match.group(0)

        if not isinstance(payload, dict) or "action" not in payload:
            return match.group(0)
        if not isinstance(payload["action"], str) or not payload["action"]:
            raise LLMUnparsableError("action block without a tool name", raw_content=content)

        arguments = payload.get("data", payload.get("arguments", {}))
        requests.append(ToolCallRequest(name=payload["action"], raw_arguments=arguments))
        return ""

    remaining = _FENCED_JSON.sub(_replace, content)
    return remaining.strip() if requests else content, requests


def parse_completion(response) -> ModelReply:
    """Decode a buffered chat-completions response into a ModelReply"""
    choices = getattr(response, "choices", None)
    if not choices:
        raise LLMUnparsableError("response contained no choices")

    message = getattr(choices[0], "message", None)
    if message is None:
        raise LLMUnparsableError("response choice has no message")

    content = message.content or ""
    if not isinstance(content, str):
        raise LLMUnparsableError("response content is not text")

    requests: List[ToolCallRequest] = []
    for tc in getattr(message, "tool_calls", None) or []:
        function = getattr(tc, "function", None)
        if function is None or not getattr(function, "name", None):
            raise LLMUnparsableError("tool call without a function name", raw_content=content)
        try:
            arguments = json.loads(function.arguments or "{}")
        except (TypeError, json.JSONDecodeError):
            raise LLMUnparsableError(
                f"tool call arguments for {function.name} are not valid JSON",
                raw_content=content,
            )
        requests.append(
            ToolCallRequest(name=function.name, raw_arguments=arguments, call_id=getattr(tc, "id", None))
        )

    if not requests and content:
        content, requests = extract_fenced_actions(content)

    return ModelReply(content=content, tool_calls=requests)


class LLMGateway:
    """Buffered and streaming access to the chat-completions endpoint"""

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
    ):
        self._client = client
        self.model = model or config.LLM_MODEL
        self.timeout = timeout if timeout is not None else config.LLM_TIMEOUT
        self.temperature = temperature if temperature is not None else config.LLM_TEMPERATURE

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not config.LLM_API_KEY:
                raise LLMUnavailableError("rejected", "LLM_API_KEY is not configured")
            self._client = OpenAI(
                api_key=config.LLM_API_KEY,
                base_url=config.LLM_BASE_URL,
                max_retries=config.LLM_MAX_RETRIES,
                timeout=self.timeout,
            )
        return self._client

    def _request(self, messages, **extra) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "timeout": self.timeout,
            **extra,
        }

    def complete(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> ModelReply:
        """One buffered round; tools are offered with tool_choice=auto"""
        extra: Dict[str, Any] = {}
        if tools:
            extra["tools"] = tools
            extra["tool_choice"] = "auto"

        try:
            response = self.client.chat.completions.create(**self._request(messages, **extra))
        except openai.OpenAIError as e:
            error = translate_error(e)
            logger.warning("llm_call_failed", model=self.model, error=str(error), kind=type(error).__name__)
            raise error from e

        reply = parse_completion(response)
        logger.info(
            "llm_call_completed",
            model=self.model,
            tool_calls=[r.name for r in reply.tool_calls],
            content_length=len(reply.content),
        )
        return reply

    def complete_stream(self, messages: List[Dict[str, Any]]) -> Iterator[str]:
        """Incremental round without tools; yields text fragments in order.

        The SDK stream is closed on exit, including when the consumer stops
        early.
        """
        try:
            with self.client.chat.completions.create(**self._request(messages, stream=True)) as stream:
                for chunk in stream:
                    choices = getattr(chunk, "choices", None)
                    if not choices:
                        continue
                    delta = getattr(choices[0], "delta", None)
                    text = getattr(delta, "content", None) if delta is not None else None
                    if text:
                        yield text
        except openai.OpenAIError as e:
            error = translate_error(e)
            logger.warning("llm_stream_failed", model=self.model, error=str(error), kind=type(error).__name__)
            raise error from e
