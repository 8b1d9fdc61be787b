"""Tests for the Ollama decision-step wrapper, with a fake AsyncClient."""

import asyncio
from types import SimpleNamespace

import pytest

from citation_verifier.exceptions import (
    DecisionStepError,
    MalformedDecisionError,
    RetryExhaustedError,
)
from citation_verifier.models import (
    ChatMessage,
    FinalDecision,
    SearchClassification,
    ToolCallRequest,
)
from citation_verifier.ollama_client import (
    OllamaClient,
    parse_tool_call,
    to_ollama_messages,
)


def _raw_call(name, arguments):
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


def _response(content="", tool_calls=None):
    return SimpleNamespace(
        message=SimpleNamespace(content=content, tool_calls=tool_calls),
        prompt_eval_count=10,
        eval_count=5,
    )


class FakeAsyncClient:
    def __init__(self, *responses, delay=0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls = []

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        await asyncio.sleep(self.delay)
        return self.responses.pop(0)


def _client(fake, **kwargs):
    client = OllamaClient(model="test-model", max_retries=0, **kwargs)
    client._client = fake
    return client


class TestParseToolCall:
    def test_dict_arguments(self):
        call = parse_tool_call(_raw_call("check_doi", {"doi": "10.1/x", "title": "T"}))
        assert call.name == "check_doi"
        assert call.arguments == {"doi": "10.1/x", "title": "T"}
        assert call.call_id.startswith("call_")

    def test_string_arguments_are_decoded(self):
        call = parse_tool_call(_raw_call("scholar_search", '{"query": "attention"}'))
        assert call.arguments == {"query": "attention"}

    def test_each_call_gets_a_new_id(self):
        first = parse_tool_call(_raw_call("check_doi", {}))
        second = parse_tool_call(_raw_call("check_doi", {}))
        assert first.call_id != second.call_id

    def test_missing_name(self):
        with pytest.raises(MalformedDecisionError):
            parse_tool_call(_raw_call("", {}))

    @pytest.mark.parametrize("arguments", ["{not json", "[1, 2]", 42])
    def test_bad_arguments(self, arguments):
        with pytest.raises(MalformedDecisionError):
            parse_tool_call(_raw_call("check_doi", arguments))


class TestToOllamaMessages:
    def test_tool_turns(self):
        call = ToolCallRequest(name="check_doi", arguments={"doi": "x"}, call_id="call_1")
        messages = to_ollama_messages(
            [
                ChatMessage(role="user", content="verify this"),
                ChatMessage(role="assistant", tool_calls=[call]),
                ChatMessage(role="tool", content="{}", tool_call_id="call_1", tool_name="check_doi"),
            ]
        )
        assert messages[0] == {"role": "user", "content": "verify this"}
        assert messages[1]["tool_calls"] == [
            {"function": {"name": "check_doi", "arguments": {"doi": "x"}}}
        ]
        assert messages[2]["tool_name"] == "check_doi"


class TestDecide:
    async def test_final_answer(self):
        fake = FakeAsyncClient(_response(content='{"status": "verified"}'))
        decision = await _client(fake).decide([ChatMessage(role="user", content="hi")], [])
        assert isinstance(decision, FinalDecision)
        assert decision.content == '{"status": "verified"}'
        assert fake.calls[0]["model"] == "test-model"
        assert fake.calls[0]["options"] == {"temperature": 0.0}

    async def test_only_first_tool_call_is_honoured(self):
        fake = FakeAsyncClient(
            _response(
                tool_calls=[
                    _raw_call("check_doi", {"doi": "10.1/x", "title": "T"}),
                    _raw_call("check_url", {"url": "https://x.org"}),
                ]
            )
        )
        tools = [{"type": "function", "function": {"name": "check_doi"}}]
        decision = await _client(fake).decide([ChatMessage(role="user", content="hi")], tools)
        assert isinstance(decision, ToolCallRequest)
        assert decision.name == "check_doi"
        assert fake.calls[0]["tools"] == tools

    async def test_timeout_is_a_decision_step_error(self):
        fake = FakeAsyncClient(_response(content="late"), delay=1.0)
        client = _client(fake, timeout=0.01)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await client.decide([ChatMessage(role="user", content="hi")], [])
        assert isinstance(exc_info.value.last_error, DecisionStepError)
        assert "timed out" in str(exc_info.value.last_error)


class TestChatStructured:
    async def test_parses_into_model(self):
        fake = FakeAsyncClient(_response(content='{"is_valid": true, "message": "found"}'))
        result = await _client(fake).chat_structured("classify", SearchClassification)
        assert result == SearchClassification(is_valid=True, message="found")
        assert fake.calls[0]["format"] == SearchClassification.model_json_schema()

    async def test_invalid_json_is_retried_then_given_up(self):
        fake = FakeAsyncClient(_response(content="nope"))
        with pytest.raises(RetryExhaustedError) as exc_info:
            await _client(fake).chat_structured("classify", SearchClassification)
        assert isinstance(exc_info.value.last_error, MalformedDecisionError)
