"""Tests for OpenAIProvider against a mocked chat completions endpoint."""

import json

import httpx
import pytest

from prismflow.errors import TransportError
from prismflow.llm.models import Message, ToolCall, ToolSpec
from prismflow.llm.openai_provider import OpenAIProvider

SEARCH_TOOL = ToolSpec(
    id="search",
    name="search",
    description="Search the web",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}},
)


def _provider(handler) -> OpenAIProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIProvider(api_key="sk-test", api_url="http://llm.test", model="gpt-test", http_client=client)


def _completion(message: dict, usage: dict | None = None) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-test",
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
        "usage": usage,
    }


async def test_generate_with_tools_translates_history() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_completion(
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "id": "call_9",
                            "type": "function",
                            "function": {"name": "search", "arguments": '{"q": "news"}'},
                        }
                    ],
                },
                usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            ),
        )

    history = [
        Message.system("be brief"),
        Message.user("hi"),
        Message(role="assistant", tool_calls=[ToolCall(id="call_1", name="search", arguments={"q": "a"})]),
        Message.tool_result("call_1", "search", "result"),
    ]
    response = await _provider(handler).generate_with_tools(history, [SEARCH_TOOL])

    assert captured["url"] == "http://llm.test/v1/chat/completions"
    body = captured["body"]
    assert body["model"] == "gpt-test"
    assert body["tool_choice"] == "auto"
    assert body["tools"][0]["function"]["name"] == "search"
    assert body["messages"][0] == {"role": "system", "content": "be brief"}
    assert body["messages"][2]["tool_calls"][0] == {
        "id": "call_1",
        "type": "function",
        "function": {"name": "search", "arguments": '{"q": "a"}'},
    }
    assert body["messages"][3] == {"role": "tool", "tool_call_id": "call_1", "content": "result"}

    assert response.content is None
    assert response.tool_calls == [ToolCall(id="call_9", name="search", arguments={"q": "news"})]
    assert response.usage.total_tokens == 15


async def test_generate_content_without_tools() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert "tools" not in body
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "ping"},
        ]
        return httpx.Response(200, json=_completion({"role": "assistant", "content": "pong"}))

    response = await _provider(handler).generate_content("ping", system_instruction="sys")
    assert response.content == "pong"
    assert response.tool_calls == []


async def test_non_success_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "upstream down"}})

    with pytest.raises(TransportError) as exc_info:
        await _provider(handler).generate_content("ping")
    assert exc_info.value.status_code == 500
    assert exc_info.value.provider == "OPENAI"


async def test_stream_content_assembles_fragments() -> None:
    events = [
        {"choices": [{"index": 0, "delta": {"content": "Hel"}}]},
        {"choices": [{"index": 0, "delta": {"content": "lo"}}]},
        {
            "choices": [
                {
                    "index": 0,
                    "delta": {
                        "tool_calls": [
                            {"index": 0, "id": "call_1", "function": {"name": "search", "arguments": '{"q": '}}
                        ]
                    },
                }
            ]
        },
        {"choices": [{"index": 0, "delta": {"tool_calls": [{"index": 0, "function": {"arguments": '"x"}'}}]}}]},
        {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7}},
    ]
    lines = [f"data: {json.dumps(e)}" for e in events[:2]]
    lines.append("data: {not json")
    lines.extend(f"data: {json.dumps(e)}" for e in events[2:])
    lines.append("data: [DONE]")
    body = "\n\n".join(lines) + "\n\n"

    def handler(request: httpx.Request) -> httpx.Response:
        sent = json.loads(request.content)
        assert sent["stream"] is True
        assert sent["stream_options"] == {"include_usage": True}
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    chunks = [c async for c in _provider(handler).stream_content("hi", [SEARCH_TOOL])]

    assert "".join(c.text for c in chunks) == "Hello"
    fragments = [d for c in chunks for d in c.tool_calls]
    assert fragments[0].name == "search"
    assert json.loads("".join(d.arguments for d in fragments)) == {"q": "x"}
    assert [c.usage.total_tokens for c in chunks if c.usage] == [7]
    assert chunks[-1].done is True


async def test_list_models_sorted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        return httpx.Response(
            200,
            json={"object": "list", "data": [{"id": "b-model", "object": "model"}, {"id": "a-model", "object": "model"}]},
        )

    assert await _provider(handler).list_models() == ["a-model", "b-model"]
