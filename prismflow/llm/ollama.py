"""Ollama local model server provider."""

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
    parse_arguments,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from prismflow.llm.models import Message, ToolSpec

logger = logging.getLogger(__name__)


class OllamaProvider(Provider):
    provider_type = ProviderType.OLLAMA
    default_api_url = "http://localhost:11434"

    async def generate_content(
        self, prompt: str, system_instruction: str | None = None
    ) -> AIResponse:
        payload: dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": False}
        if system_instruction:
            payload["system"] = system_instruction
        data = await self._post_json(f"{self.api_url}/api/generate", payload)
        return AIResponse(content=data.get("response") or "", usage=_usage(data))

    async def generate_with_tools(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None = None,
    ) -> AIResponse:
        payload = self._chat_payload(messages, tools, system_instruction, stream=False)
        data = await self._post_json(f"{self.api_url}/api/chat", payload)
        message = data.get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id") or f"call_{idx}",
                name=(tc.get("function") or {}).get("name"),
                arguments=parse_arguments((tc.get("function") or {}).get("arguments")),
            )
            for idx, tc in enumerate(message.get("tool_calls") or [])
            if (tc.get("function") or {}).get("name")
        ]
        return AIResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            usage=_usage(data),
        )

    async def stream_content(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        system_instruction: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        payload = self._chat_payload(messages, tools or [], system_instruction, stream=True)
        async with self._http.stream("POST", f"{self.api_url}/api/chat", json=payload) as response:
            await self._raise_for_status(response)
            call_index = 0
            async for data in self._iter_json_lines(response.aiter_lines(), sse=False):
                message = data.get("message") or {}
                deltas = []
                for tc in message.get("tool_calls") or []:
                    function = tc.get("function") or {}
                    arguments = function.get("arguments")
                    deltas.append(
                        ToolCallDelta(
                            index=call_index,
                            id=tc.get("id") or f"call_{call_index}",
                            name=function.get("name"),
                            arguments=arguments if isinstance(arguments, str) else json.dumps(arguments or {}),
                        )
                    )
                    call_index += 1
                done = bool(data.get("done"))
                text = message.get("content") or ""
                if text or deltas:
                    yield StreamChunk(text=text, tool_calls=deltas)
                if done:
                    yield StreamChunk(usage=_usage(data, force=True), done=True)
                    return

    async def list_models(self) -> list[str]:
        response = await self._http.get(f"{self.api_url}/api/tags")
        await self._raise_for_status(response)
        return [model["name"] for model in response.json().get("models", [])]

    # -- Wire translation ------------------------------------------------------

    def _chat_payload(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        wire: list[dict[str, Any]] = []
        if system_instruction:
            wire.append({"role": "system", "content": system_instruction})
        for message in self.normalize_history(messages):
            entry: dict[str, Any] = {"role": message.role, "content": message.content or ""}
            if message.tool_calls:
                entry["tool_calls"] = [
                    {"function": {"name": tc.name, "arguments": tc.arguments}}
                    for tc in message.tool_calls
                ]
            if message.role == "tool" and message.name:
                entry["tool_name"] = message.name
            wire.append(entry)
        payload: dict[str, Any] = {"model": self.model, "messages": wire, "stream": stream}
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        return payload


def _usage(data: dict[str, Any], *, force: bool = False) -> Usage | None:
    if not data.get("prompt_eval_count") and not force:
        return None
    return Usage.from_counts(data.get("prompt_eval_count"), data.get("eval_count"))
