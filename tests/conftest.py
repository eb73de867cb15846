"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from prismflow.llm.base import Provider
from prismflow.llm.models import AIResponse, ProviderType, StreamChunk
from prismflow.store import Store


class ScriptedProvider(Provider):
    """Provider that replays canned responses and records every request."""

    provider_type = ProviderType.OPENAI

    def __init__(self, responses: list[AIResponse] | None = None, repeat: AIResponse | None = None) -> None:
        super().__init__(api_key="test", model="scripted")
        self._responses = list(responses or [])
        self._repeat = repeat
        self.requests: list[list] = []
        self.tools_seen: list[list] = []

    async def generate_content(self, prompt, system_instruction=None) -> AIResponse:
        return await self.generate_with_tools(prompt, [], system_instruction)

    async def generate_with_tools(self, messages, tools, system_instruction=None) -> AIResponse:
        self.requests.append(list(self.normalize_history(messages)))
        self.tools_seen.append(list(tools))
        if self._responses:
            return self._responses.pop(0)
        if self._repeat is not None:
            return self._repeat
        return AIResponse(content="")

    async def stream_content(self, messages, tools=None, system_instruction=None):
        response = await self.generate_with_tools(messages, tools or [], system_instruction)
        yield StreamChunk(text=response.content or "")
        yield StreamChunk(done=True)


@pytest.fixture
async def store(tmp_path: Path) -> Store:
    """Create a Store backed by a temp database."""
    s = Store(db_path=tmp_path / "test.db")
    await s.initialize()
    return s


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""
    return ScriptedProvider
