"""Anthropic Messages API provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import anthropic

from prismflow.errors import TransportError
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

MAX_TOKENS = 4096

# Returned when the endpoint (often a proxy) does not expose /v1/models.
FALLBACK_MODELS = [
    "claude-3-5-sonnet-20240620",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
]


class AnthropicProvider(Provider):
    provider_type = ProviderType.CLAUDE
    default_api_url = "https://api.anthropic.com"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._client = anthropic.AsyncAnthropic(
            api_key=self.api_key,
            base_url=self.api_url,
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
        kwargs = self._message_kwargs(messages, tools, system_instruction)
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise TransportError(self.name, exc.status_code, exc.message) from exc

        text = "".join(block.text for block in response.content if block.type == "text")
        tool_calls = [
            ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
            for block in response.content
            if block.type == "tool_use"
        ]
        usage = None
        if response.usage is not None:
            usage = Usage.from_counts(response.usage.input_tokens, response.usage.output_tokens)
        return AIResponse(
            content=text or None,
            tool_calls=tool_calls,
            usage=usage,
            raw_continuation=_serialize_content(response.content),
        )

    async def stream_content(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        system_instruction: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._message_kwargs(messages, tools or [], system_instruction)
        kwargs["stream"] = True
        try:
            async with self._client.messages.with_streaming_response.create(
                **kwargs
            ) as response:
                async for event in self._iter_json_lines(response.iter_lines()):
                    if event.get("type") == "message_stop":
                        break
                    chunk = _stream_chunk(event)
                    if chunk is not None:
                        yield chunk
        except anthropic.APIStatusError as exc:
            raise TransportError(self.name, exc.status_code, exc.message) from exc
        yield StreamChunk(done=True)

    async def list_models(self) -> list[str]:
        try:
            page = await self._client.models.list()
        except anthropic.APIError as exc:
            logger.warning("Anthropic model listing unavailable, using fallback list: %s", exc)
            return list(FALLBACK_MODELS)
        return [model.id for model in page.data]

    # -- Wire translation ------------------------------------------------------

    def _message_kwargs(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None,
    ) -> dict[str, Any]:
        system, history = self.split_system(self.normalize_history(messages), system_instruction)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": MAX_TOKENS,
            "messages": _to_wire_messages(history),
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in tools
            ]
            kwargs["tool_choice"] = {"type": "auto"}
        return kwargs


def _serialize_content(content: list[Any]) -> list[dict[str, Any]]:
    """Convert SDK content blocks to plain dicts for message history."""
    result: list[dict[str, Any]] = []
    for block in content:
        if block.type == "text":
            result.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result.append({
                "type": "tool_use",
                "id": block.id,
                "name": block.name,
                "input": block.input,
            })
    return result


def _to_wire_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Map unified turns to Anthropic turns.

    Tool results become ``tool_result`` blocks inside a user turn; results
    for consecutive tool messages share one user turn.
    """
    wire: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content or "",
            }
            previous = wire[-1] if wire else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and all(b.get("type") == "tool_result" for b in previous["content"])
            ):
                previous["content"].append(block)
            else:
                wire.append({"role": "user", "content": [block]})
        elif message.role == "assistant":
            if message.raw_continuation:
                wire.append({"role": "assistant", "content": message.raw_continuation})
                continue
            blocks: list[dict[str, Any]] = []
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for tc in message.tool_calls:
                blocks.append({"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments})
            wire.append({"role": "assistant", "content": blocks or ""})
        else:
            wire.append({"role": "user", "content": message.content or ""})
    return wire


def _stream_chunk(event: dict[str, Any]) -> StreamChunk | None:
    event_type = event.get("type")
    if event_type == "message_start":
        usage = (event.get("message") or {}).get("usage")
        if usage:
            return StreamChunk(usage=Usage.from_counts(prompt=usage.get("input_tokens")))
    elif event_type == "content_block_start":
        block = event.get("content_block") or {}
        if block.get("type") == "tool_use":
            return StreamChunk(
                tool_calls=[
                    ToolCallDelta(index=event.get("index", 0), id=block.get("id"), name=block.get("name"))
                ]
            )
    elif event_type == "content_block_delta":
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta":
            return StreamChunk(text=delta.get("text", ""))
        if delta.get("type") == "input_json_delta":
            return StreamChunk(
                tool_calls=[
                    ToolCallDelta(index=event.get("index", 0), arguments=delta.get("partial_json", ""))
                ]
            )
    elif event_type == "message_delta":
        usage = event.get("usage")
        if usage:
            return StreamChunk(usage=Usage.from_counts(completion=usage.get("output_tokens")))
    return None
