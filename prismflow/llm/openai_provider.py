"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import openai

from prismflow.errors import TransportError
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


class OpenAIProvider(Provider):
    """Any endpoint that speaks ``/v1/chat/completions``."""

    provider_type = ProviderType.OPENAI
    default_api_url = "https://api.openai.com"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = openai.AsyncOpenAI(
            api_key=self.api_key,
            base_url=f"{self.api_url}/v1",
            http_client=self._http,
            max_retries=0,
        )

    async def generate_content(
        self, prompt: str, system_instruction: str | None = None
    ) -> AIResponse:
        return await self.generate_with_tools(prompt, [], system_instruction)

    async def generate_with_tools(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None = None,
    ) -> AIResponse:
        kwargs = self._chat_kwargs(messages, tools, system_instruction)
        try:
            completion = await self._client.chat.completions.create(**kwargs)
        except openai.APIStatusError as exc:
            raise TransportError(self.name, exc.status_code, exc.message) from exc

        if not completion.choices:
            return AIResponse(usage=_usage(completion.usage))
        message = completion.choices[0].message
        tool_calls = [
            ToolCall(
                id=tc.id,
                name=tc.function.name,
                arguments=parse_arguments(tc.function.arguments),
            )
            for tc in message.tool_calls or []
        ]
        return AIResponse(
            content=message.content,
            tool_calls=tool_calls,
            usage=_usage(completion.usage),
        )

    async def stream_content(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        system_instruction: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._chat_kwargs(messages, tools or [], system_instruction)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}
        try:
            async with self._client.chat.completions.with_streaming_response.create(
                **kwargs
            ) as response:
                async for data in self._iter_json_lines(response.iter_lines()):
                    yield _stream_chunk(data)
        except openai.APIStatusError as exc:
            raise TransportError(self.name, exc.status_code, exc.message) from exc
        yield StreamChunk(done=True)

    async def list_models(self) -> list[str]:
        try:
            page = await self._client.models.list()
        except openai.APIStatusError as exc:
            raise TransportError(self.name, exc.status_code, exc.message) from exc
        return sorted(model.id for model in page.data)

    # -- Wire translation ------------------------------------------------------

    def _chat_kwargs(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": _to_wire_messages(self.normalize_history(messages), system_instruction),
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = "auto"
        return kwargs


def _to_wire_messages(
    messages: list[Message], system_instruction: str | None
) -> list[dict[str, Any]]:
    wire: list[dict[str, Any]] = []
    if system_instruction:
        wire.append({"role": "system", "content": system_instruction})
    for message in messages:
        if message.role == "tool":
            wire.append({
                "role": "tool",
                "tool_call_id": message.tool_call_id,
                "content": message.content or "",
            })
        elif message.role == "assistant" and message.tool_calls:
            wire.append({
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                    }
                    for tc in message.tool_calls
                ],
            })
        else:
            wire.append({"role": message.role, "content": message.content or ""})
    return wire


def _usage(usage: Any) -> Usage | None:
    if usage is None:
        return None
    return Usage.from_counts(usage.prompt_tokens, usage.completion_tokens, usage.total_tokens)


def _stream_chunk(data: dict[str, Any]) -> StreamChunk:
    choices = data.get("choices") or []
    delta = (choices[0].get("delta") or {}) if choices else {}
    tool_calls = []
    for position, tc in enumerate(delta.get("tool_calls") or []):
        function = tc.get("function") or {}
        tool_calls.append(
            ToolCallDelta(
                index=tc.get("index", position),
                id=tc.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments") or "",
            )
        )
    usage = None
    if data.get("usage"):
        raw = data["usage"]
        usage = Usage.from_counts(
            raw.get("prompt_tokens"), raw.get("completion_tokens"), raw.get("total_tokens")
        )
    return StreamChunk(text=delta.get("content") or "", tool_calls=tool_calls, usage=usage)
