"""Provider ABC and the wire helpers shared by every vendor implementation."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

import httpx

from prismflow.config import settings
from prismflow.errors import StreamParseError, TransportError
from prismflow.llm.models import Message

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from prismflow.llm.models import AIResponse, ProviderType, StreamChunk, ToolSpec

logger = logging.getLogger(__name__)


class Provider(ABC):
    """One AI vendor behind a uniform completion / tool-calling interface.

    Args:
        api_key: Vendor credential.
        api_url: Base URL; falls back to ``default_api_url``.
        model: Model identifier sent with every request.
        http_client: Shared outbound client. Pass a proxy-enabled client to
            route requests through the configured dispatcher.
    """

    provider_type: ClassVar[ProviderType]
    default_api_url: ClassVar[str] = ""

    def __init__(
        self,
        *,
        api_key: str = "",
        api_url: str | None = None,
        model: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.api_url = (api_url or self.default_api_url).rstrip("/")
        self.model = model
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)

    @property
    def name(self) -> str:
        return self.provider_type.value

    # -- Capabilities ----------------------------------------------------------

    @abstractmethod
    async def generate_content(
        self, prompt: str, system_instruction: str | None = None
    ) -> AIResponse:
        """Single-shot completion with no tools."""

    @abstractmethod
    async def generate_with_tools(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec],
        system_instruction: str | None = None,
    ) -> AIResponse:
        """One model turn over a unified history, with tools offered."""

    @abstractmethod
    def stream_content(
        self,
        messages: str | Sequence[Message],
        tools: Sequence[ToolSpec] | None = None,
        system_instruction: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Lazily yield chunks until the vendor's completion signal."""

    async def list_models(self) -> list[str]:
        return []

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -- Shared helpers --------------------------------------------------------

    @staticmethod
    def normalize_history(messages: str | Sequence[Message]) -> list[Message]:
        """Accept a bare prompt or a message sequence; never mutates the input."""
        if isinstance(messages, str):
            return [Message.user(messages)]
        return list(messages)

    @staticmethod
    def split_system(
        messages: Sequence[Message], system_instruction: str | None = None
    ) -> tuple[str | None, list[Message]]:
        """Pull system turns out of the history for vendors that take them separately."""
        system_parts = [system_instruction] if system_instruction else []
        rest: list[Message] = []
        for message in messages:
            if message.role == "system":
                if message.content:
                    system_parts.append(message.content)
            else:
                rest.append(message)
        return ("\n\n".join(system_parts) or None), rest

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        await response.aread()
        raise TransportError(self.name, response.status_code, response.text)

    async def _post_json(self, url: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        response = await self._http.post(url, json=payload, **kwargs)
        await self._raise_for_status(response)
        return response.json()

    async def _iter_json_lines(
        self, lines: AsyncIterator[str], *, sse: bool = True
    ) -> AsyncIterator[dict[str, Any]]:
        """Decode an SSE (``data: ...``) or NDJSON line stream into JSON objects.

        Malformed chunks are logged and skipped. ``[DONE]`` ends the stream.
        """
        async for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue
            if sse:
                if not line.startswith("data:"):
                    continue
                line = line[len("data:") :].strip()
                if line == "[DONE]":
                    return
            try:
                yield _decode_chunk(line)
            except StreamParseError as exc:
                logger.warning("Skipping malformed %s stream chunk: %s", self.name, exc)


def _decode_chunk(payload: str) -> dict[str, Any]:
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise StreamParseError(f"{exc.msg}: {payload[:200]!r}") from exc
    if not isinstance(data, dict):
        raise StreamParseError(f"expected a JSON object, got {type(data).__name__}")
    return data
