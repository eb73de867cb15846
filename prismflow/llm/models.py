"""Vendor-neutral message, tool and response types for the provider layer."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)


class ProviderType(StrEnum):
    OPENAI = "OPENAI"
    CLAUDE = "CLAUDE"
    GEMINI = "GEMINI"
    OLLAMA = "OLLAMA"


class ProviderConfig(BaseModel):
    """A configured AI vendor endpoint, as stored in system settings.

    Defaults are resolved here once: a blank ``api_url`` falls back to the
    vendor's public endpoint and the model falls back to the first entry
    of ``models``.
    """

    id: str
    name: str = ""
    type: ProviderType
    api_url: str = ""
    api_key: str = ""
    models: list[str] = Field(default_factory=list)
    enabled: bool = True
    use_proxy: bool = False

    def resolve_model(self, override: str | None = None) -> str:
        """Return the explicit override, else the first configured model."""
        if override:
            return override
        return self.models[0] if self.models else ""


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    """One entry in a conversation history.

    Attributes:
        role: ``"system"``, ``"user"``, ``"assistant"`` or ``"tool"``.
        content: Text content; None for assistant turns that only call tools.
        tool_calls: Tool invocations requested by an assistant turn.
        tool_call_id: For tool turns, the id of the call being answered.
        name: For tool turns, the name of the tool that produced the result.
        raw_continuation: Opaque vendor payload replayed verbatim on the next
            request (Gemini parts with thought signatures, Anthropic blocks).
    """

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    raw_continuation: Any = None

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, content: str) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


@dataclass
class ToolSpec:
    """Provider-facing description of a callable tool.

    ``source_id`` is set only for tools served by a remote tool source; the
    ``id`` of such tools is ``"{source_id}:{original_name}"``.
    """

    id: str
    name: str
    description: str
    parameters: dict[str, Any]
    source_id: str | None = None

    @property
    def original_name(self) -> str:
        if self.source_id and self.id.startswith(f"{self.source_id}:"):
            return self.id[len(self.source_id) + 1 :]
        return self.name


@dataclass
class Usage:
    """Token accounting normalized across vendors."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(
        cls,
        prompt: int | None = None,
        completion: int | None = None,
        total: int | None = None,
    ) -> Usage:
        """Build usage from whichever counts a vendor reported."""
        prompt = prompt or 0
        completion = completion or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total if total else prompt + completion,
        )

    def merge(self, other: Usage) -> Usage:
        """Combine counts reported on separate stream chunks."""
        prompt = other.prompt_tokens or self.prompt_tokens
        completion = other.completion_tokens or self.completion_tokens
        return Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=max(other.total_tokens, self.total_tokens, prompt + completion),
        )


@dataclass
class AIResponse:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None
    raw_continuation: Any = None


@dataclass
class ToolCallDelta:
    """A streamed fragment of a tool call.

    ``arguments`` is a raw string fragment; only the concatenation of all
    fragments for one ``index`` is expected to be valid JSON.
    """

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass
class StreamChunk:
    text: str = ""
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    usage: Usage | None = None
    done: bool = False


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode tool-call arguments that may arrive as a JSON string or a dict."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return value if isinstance(value, dict) else {}


class SystemSettings(BaseModel):
    """Process-wide settings record stored under the ``system_settings`` key."""

    model_config = ConfigDict(populate_by_name=True)

    active_ai_provider_id: str | None = Field(default=None, alias="ACTIVE_AI_PROVIDER_ID")
    ai_providers: list[ProviderConfig] = Field(default_factory=list, alias="AI_PROVIDERS")
    api_proxy: str | None = Field(default=None, alias="API_PROXY")
    closed_plugins: list[str] = Field(default_factory=list, alias="CLOSED_PLUGINS")

    @field_validator("ai_providers", mode="before")
    @classmethod
    def _drop_invalid_providers(cls, value: Any) -> Any:
        # Entries that fail validation are dropped and logged.
        if not isinstance(value, list):
            return value
        providers: list[ProviderConfig] = []
        for entry in value:
            try:
                providers.append(ProviderConfig.model_validate(entry))
            except ValidationError as exc:
                provider_id = entry.get("id") if isinstance(entry, dict) else None
                logger.warning("Ignoring invalid AI provider config %r: %s", provider_id, exc)
        return providers

    def get_provider(self, provider_id: str | None) -> ProviderConfig | None:
        if not provider_id:
            return None
        return next((p for p in self.ai_providers if p.id == provider_id), None)
