"""Google Gemini (generativelanguage v1beta) provider over raw HTTP."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from prismflow.llm.base import Provider
from prismflow.llm.models import (
    AIResponse,
    ProviderType,
    StreamChunk,
    ToolCall,
    ToolCallDelta,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from prismflow.llm.models import Message, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_GROUNDING_TOOLS = ("google_search", "googleMaps", "url_context")


class GeminiProvider(Provider):
    """Gemini REST API.

    Args:
        grounding_tools: Built-in Gemini tools attached to every request
            alongside any function declarations.
    """

    provider_type = ProviderType.GEMINI
    default_api_url = "https://generativelanguage.googleapis.com"

    def __init__(self, *, grounding_tools: Sequence[str] = DEFAULT_GROUNDING_TOOLS, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.grounding_tools = tuple(grounding_tools)

    async def generate_content(
        self, prompt: str, system_instruction: str | None = None
    ) -> AIResponse:
        payload: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        data = await self._post_json(
            self._model_url("generateContent"), payload, params={"key": self.api_key}
        )
        parts = _candidate_parts(data)
        text = "".join(p["text"] for p in parts if isinstance(p.get("text"), str))
        return AIResponse(content=text, usage=_usage(data))

    async def generate_with_tools(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None = None,
    ) -> AIResponse:
        payload = self._payload(messages, tools, system_instruction)
        data = await self._post_json(
            self._model_url("generateContent"), payload, params={"key": self.api_key}
        )
        parts = _candidate_parts(data)
        text = "".join(p["text"] for p in parts if isinstance(p.get("text"), str))
        return AIResponse(
            content=text,
            tool_calls=_function_calls(parts),
            usage=_usage(data),
            raw_continuation=parts,
        )

    async def stream_content(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        system_instruction: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        payload = self._payload(messages, tools or [], system_instruction)
        async with self._http.stream(
            "POST",
            self._model_url("streamGenerateContent"),
            json=payload,
            params={"key": self.api_key, "alt": "sse"},
        ) as response:
            await self._raise_for_status(response)
            call_index = 0
            async for data in self._iter_json_lines(response.aiter_lines()):
                parts = _candidate_parts(data)
                text = "".join(p["text"] for p in parts if isinstance(p.get("text"), str))
                deltas = []
                for call in _function_calls(parts):
                    deltas.append(
                        ToolCallDelta(
                            index=call_index,
                            id=call.id,
                            name=call.name,
                            arguments=json.dumps(call.arguments),
                        )
                    )
                    call_index += 1
                usage = _usage(data)
                if text or deltas or usage:
                    yield StreamChunk(text=text, tool_calls=deltas, usage=usage)
        yield StreamChunk(done=True)

    async def list_models(self) -> list[str]:
        response = await self._http.get(
            f"{self.api_url}/v1beta/models", params={"key": self.api_key}
        )
        await self._raise_for_status(response)
        return [
            model["name"].removeprefix("models/")
            for model in response.json().get("models", [])
            if "generateContent" in model.get("supportedGenerationMethods", [])
        ]

    # -- Wire translation ------------------------------------------------------

    def _model_url(self, method: str) -> str:
        return f"{self.api_url}/v1beta/models/{self.model}:{method}"

    def _payload(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None,
    ) -> dict[str, Any]:
        system, history = self.split_system(self.normalize_history(messages), system_instruction)
        payload: dict[str, Any] = {
            "contents": [_to_content(m) for m in history],
            "tools": [{name: {}} for name in self.grounding_tools],
        }
        if tools:
            payload["tools"].append({
                "functionDeclarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters}
                    for t in tools
                ]
            })
            payload["toolConfig"] = {"functionCallingConfig": {"mode": "AUTO"}}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload


def _to_content(message: Message) -> dict[str, Any]:
    if message.role == "tool":
        return {
            "role": "function",
            "parts": [{
                "functionResponse": {
                    "name": message.name,
                    "response": {"content": message.content},
                }
            }],
        }
    role = "model" if message.role == "assistant" else "user"
    # Replayed verbatim so thought signatures survive the round trip.
    if message.raw_continuation:
        return {"role": role, "parts": message.raw_continuation}
    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"text": message.content})
    for tc in message.tool_calls:
        parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
    return {"role": role, "parts": parts}


def _candidate_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    return (candidates[0].get("content") or {}).get("parts") or []


def _function_calls(parts: list[dict[str, Any]]) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for idx, part in enumerate(p for p in parts if p.get("functionCall")):
        call = part["functionCall"]
        if not call.get("name"):
            continue
        calls.append(
            ToolCall(id=call.get("id") or f"call_{idx}", name=call["name"], arguments=call.get("args") or {})
        )
    return calls


def _usage(data: dict[str, Any]) -> Usage | None:
    meta = data.get("usageMetadata")
    if not meta:
        return None
    return Usage.from_counts(
        meta.get("promptTokenCount"),
        meta.get("candidatesTokenCount"),
        meta.get("totalTokenCount"),
    )
