"""Shared Ollama interaction helper.

Wraps ollama.AsyncClient.chat() with tool calling, structured output,
a wall-clock timeout per call and retries for transient failures. This is
the decision step of the agentic verifier and the classifier used by the
waterfall and high-accuracy passes.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, TypeVar

import httpx
import ollama
from pydantic import BaseModel, ValidationError

from .exceptions import DecisionStepError, MalformedDecisionError, RateLimitError
from .models import ChatMessage, DecisionResult, FinalDecision, ToolCallRequest
from .retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_MODEL = "llama3.1"
TRANSIENT_ERRORS = (RateLimitError, DecisionStepError)


def new_call_id() -> str:
    """Correlation id for a tool call (Ollama does not assign one)."""
    return f"call_{uuid.uuid4().hex[:12]}"


def to_ollama_messages(history: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert our transcript to the message dicts ollama.chat() accepts."""
    messages = []
    for msg in history:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}}
                for call in msg.tool_calls
            ]
        if msg.role == "tool" and msg.tool_name:
            entry["tool_name"] = msg.tool_name
        messages.append(entry)
    return messages


def parse_tool_call(raw_call: Any) -> ToolCallRequest:
    """Validate one tool call from an Ollama response."""
    function = getattr(raw_call, "function", None)
    name = getattr(function, "name", None)
    arguments = getattr(function, "arguments", None)
    if not name:
        raise MalformedDecisionError("Tool call without a function name", repr(raw_call))
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError as e:
            raise MalformedDecisionError(
                f"Tool call arguments for {name} are not valid JSON: {e}", arguments
            ) from e
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise MalformedDecisionError(
            f"Tool call arguments for {name} must be an object", repr(arguments)
        )
    return ToolCallRequest(name=name, arguments=dict(arguments), call_id=new_call_id())


class OllamaClient:
    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.0,
        host: str | None = None,
        timeout: float = 60.0,
        max_retries: int = 3,
    ):
        self.model = model
        self.temperature = temperature
        self.host = host
        self.timeout = timeout
        self.max_retries = max_retries
        self._client: ollama.AsyncClient | None = None

    def _get_client(self) -> ollama.AsyncClient:
        if self._client is None:
            self._client = ollama.AsyncClient(host=self.host)
        return self._client

    async def check_connection(self) -> bool:
        """Check if Ollama is running and the model is available."""
        try:
            models = await self._get_client().list()
            available = [m.model for m in models.models]
            if not any(self.model in (name or "") for name in available):
                logger.error(
                    "Model '%s' not found. Available models: %s",
                    self.model,
                    available,
                )
                return False
            return True
        except Exception as e:
            logger.error("Cannot connect to Ollama: %s", e)
            return False

    async def _chat(self, **kwargs) -> Any:
        """One chat call, with failures mapped onto our exception types."""
        try:
            response = await asyncio.wait_for(
                self._get_client().chat(
                    model=self.model,
                    options={"temperature": self.temperature},
                    **kwargs,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise DecisionStepError(f"Ollama call timed out after {self.timeout:.0f}s") from e
        except ollama.ResponseError as e:
            if e.status_code == 429:
                raise RateLimitError(f"Ollama rate limited: {e.error}") from e
            raise DecisionStepError(f"Ollama error ({e.status_code}): {e.error}") from e
        except (ConnectionError, httpx.HTTPError) as e:
            raise DecisionStepError(
                f"Ollama is not reachable (is 'ollama serve' running?): {e}"
            ) from e

        usage = (getattr(response, "prompt_eval_count", None), getattr(response, "eval_count", None))
        logger.debug("Ollama tokens: prompt=%s completion=%s", *usage)
        return response

    async def _decide_once(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]
    ) -> DecisionResult:
        response = await self._chat(messages=messages, tools=tools)
        message = response.message
        tool_calls = list(message.tool_calls or [])

        if not tool_calls:
            return FinalDecision(content=message.content or "")

        if len(tool_calls) > 1:
            logger.warning(
                "Decision step requested %d tool calls; honouring only '%s'",
                len(tool_calls),
                getattr(tool_calls[0].function, "name", "?"),
            )
        return parse_tool_call(tool_calls[0])

    async def decide(
        self, history: list[ChatMessage], tools: list[dict[str, Any]]
    ) -> DecisionResult:
        """Ask the model for the next step: one tool call or a final answer."""
        return await retry_async(
            self._decide_once,
            to_ollama_messages(history),
            tools,
            max_retries=self.max_retries,
            retry_on=TRANSIENT_ERRORS,
        )

    async def _structured_once(
        self, messages: list[dict[str, Any]], response_model: type[T]
    ) -> T:
        response = await self._chat(
            messages=messages, format=response_model.model_json_schema()
        )
        raw_json = response.message.content or ""
        try:
            return response_model.model_validate(json.loads(raw_json))
        except (json.JSONDecodeError, ValidationError) as e:
            raise MalformedDecisionError(
                f"Structured output did not match {response_model.__name__}: {e}",
                raw_json,
            ) from e

    async def chat_structured(
        self,
        prompt: str,
        response_model: type[T],
        system_prompt: str = "",
    ) -> T:
        """Send a prompt and parse the response into a Pydantic model.

        Uses Ollama's format= parameter for structured JSON output.
        """
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        return await retry_async(
            self._structured_once,
            messages,
            response_model,
            max_retries=self.max_retries,
            retry_on=TRANSIENT_ERRORS,
        )

    async def chat_raw(self, prompt: str, system_prompt: str = "") -> str:
        """Send a prompt and return the raw text response."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await retry_async(
            self._chat,
            messages=messages,
            max_retries=self.max_retries,
            retry_on=TRANSIENT_ERRORS,
        )
        return response.message.content or ""
