"""Tests for GeminiProvider wire translation."""

import json

import httpx
import pytest

from prismflow.errors import TransportError
from prismflow.llm.gemini import GeminiProvider
from prismflow.llm.models import Message, ToolCall, ToolSpec

WEATHER_TOOL = ToolSpec(
    id="weather",
    name="weather",
    description="Current weather",
    parameters={"type": "object", "properties": {"city": {"type": "string"}}},
)


def _provider(handler, **kwargs) -> GeminiProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiProvider(
        api_key="g-key", api_url="http://gemini.test", model="gemini-test", http_client=client, **kwargs
    )


async def test_generate_with_tools_payload_and_response() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "candidates": [
                    {
                        "content": {
                            "role": "model",
                            "parts": [
                                {"text": "Let me check."},
                                {"functionCall": {"name": "weather", "args": {"city": "Oslo"}}, "thoughtSignature": "sig"},
                            ],
                        }
                    }
                ],
                "usageMetadata": {"promptTokenCount": 8, "candidatesTokenCount": 4, "totalTokenCount": 12},
            },
        )

    history = [
        Message.system("be brief"),
        Message.user("weather?"),
        Message(role="assistant", tool_calls=[ToolCall(id="c1", name="weather", arguments={"city": "Rome"})]),
        Message.tool_result("c1", "weather", "sunny"),
    ]
    response = await _provider(handler).generate_with_tools(history, [WEATHER_TOOL])

    request = captured["request"]
    assert request.url.path == "/v1beta/models/gemini-test:generateContent"
    assert request.url.params["key"] == "g-key"

    body = captured["body"]
    assert body["systemInstruction"] == {"parts": [{"text": "be brief"}]}
    assert [c["role"] for c in body["contents"]] == ["user", "model", "function"]
    assert body["contents"][1]["parts"] == [{"functionCall": {"name": "weather", "args": {"city": "Rome"}}}]
    assert body["contents"][2]["parts"][0]["functionResponse"] == {
        "name": "weather",
        "response": {"content": "sunny"},
    }
    assert body["tools"][:3] == [{"google_search": {}}, {"googleMaps": {}}, {"url_context": {}}]
    assert body["tools"][3]["functionDeclarations"][0]["name"] == "weather"
    assert body["toolConfig"] == {"functionCallingConfig": {"mode": "AUTO"}}

    assert response.content == "Let me check."
    assert response.tool_calls == [ToolCall(id="call_0", name="weather", arguments={"city": "Oslo"})]
    assert response.usage.total_tokens == 12
    assert response.raw_continuation[1]["thoughtSignature"] == "sig"


async def test_raw_continuation_parts_replayed() -> None:
    captured = {}
    parts = [{"functionCall": {"name": "weather", "args": {}}, "thoughtSignature": "abc"}]

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "done"}]}}]})

    history = [
        Message.user("hi"),
        Message(role="assistant", tool_calls=[ToolCall(id="call_0", name="weather")], raw_continuation=parts),
        Message.tool_result("call_0", "weather", "ok"),
    ]
    response = await _provider(handler, grounding_tools=()).generate_with_tools(history, [])

    assert captured["body"]["contents"][1] == {"role": "model", "parts": parts}
    assert captured["body"]["tools"] == []
    assert "toolConfig" not in captured["body"]
    assert response.content == "done"
    assert response.usage is None


async def test_stream_content_sse() -> None:
    events = [
        {"candidates": [{"content": {"parts": [{"text": "Hel"}]}}]},
        {"candidates": [{"content": {"parts": [{"text": "lo"}]}}]},
        {
            "candidates": [{"content": {"parts": [{"functionCall": {"name": "weather", "args": {"city": "Oslo"}}}]}}],
            "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 3},
        },
    ]
    lines = [f"data: {json.dumps(events[0])}", "data: not-json", *(f"data: {json.dumps(e)}" for e in events[1:])]
    body = "\r\n\r\n".join(lines) + "\r\n\r\n"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith(":streamGenerateContent")
        assert request.url.params["alt"] == "sse"
        return httpx.Response(200, content=body.encode())

    chunks = [c async for c in _provider(handler).stream_content("hi", [WEATHER_TOOL])]

    assert "".join(c.text for c in chunks) == "Hello"
    deltas = [d for c in chunks for d in c.tool_calls]
    assert len(deltas) == 1
    assert deltas[0].name == "weather"
    assert json.loads(deltas[0].arguments) == {"city": "Oslo"}
    assert [c.usage.total_tokens for c in chunks if c.usage] == [5]
    assert chunks[-1].done is True


async def test_error_status_raises_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"error": {"message": "bad key"}})

    with pytest.raises(TransportError) as exc_info:
        await _provider(handler).generate_content("hi")
    assert exc_info.value.status_code == 403
    assert "bad key" in exc_info.value.body


async def test_list_models_filters_generate_content() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "models": [
                    {"name": "models/gemini-pro", "supportedGenerationMethods": ["generateContent"]},
                    {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
                ]
            },
        )

    assert await _provider(handler).list_models() == ["gemini-pro"]
