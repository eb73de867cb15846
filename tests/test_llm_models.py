"""Tests for the vendor-neutral provider types."""

import pytest

from prismflow.llm.models import (
    Message,
    ProviderConfig,
    ProviderType,
    SystemSettings,
    ToolSpec,
    Usage,
    parse_arguments,
)


def test_usage_from_counts_fills_total() -> None:
    usage = Usage.from_counts(10, 5)
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (10, 5, 15)


def test_usage_from_counts_keeps_reported_total() -> None:
    assert Usage.from_counts(10, 5, 20).total_tokens == 20


def test_usage_from_counts_missing_values() -> None:
    assert Usage.from_counts(None, None) == Usage(0, 0, 0)


def test_usage_merge() -> None:
    merged = Usage.from_counts(prompt=12).merge(Usage.from_counts(completion=3))
    assert merged == Usage(prompt_tokens=12, completion_tokens=3, total_tokens=15)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('{"a": 1}', {"a": 1}),
        ({"a": 1}, {"a": 1}),
        ("", {}),
        (None, {}),
        ("not json", {}),
        ("[1, 2]", {}),
    ],
)
def test_parse_arguments(raw, expected) -> None:
    assert parse_arguments(raw) == expected


def test_message_constructors() -> None:
    assert Message.system("s").role == "system"
    assert Message.user("u").content == "u"
    result = Message.tool_result("call_1", "search", "ok")
    assert (result.role, result.tool_call_id, result.name) == ("tool", "call_1", "search")


def test_tool_spec_original_name() -> None:
    remote = ToolSpec(id="fs:read file", name="fs__read_file", description="", parameters={}, source_id="fs")
    local = ToolSpec(id="search", name="search", description="", parameters={})
    assert remote.original_name == "read file"
    assert local.original_name == "search"


def test_provider_config_resolve_model() -> None:
    config = ProviderConfig(id="p", type=ProviderType.OPENAI, models=["gpt-a", "gpt-b"])
    assert config.resolve_model() == "gpt-a"
    assert config.resolve_model("gpt-z") == "gpt-z"
    assert ProviderConfig(id="q", type="OLLAMA").resolve_model() == ""


def test_system_settings_aliases() -> None:
    data = {
        "ACTIVE_AI_PROVIDER_ID": "p1",
        "AI_PROVIDERS": [{"id": "p1", "type": "CLAUDE", "api_key": "k"}],
        "API_PROXY": "http://proxy:8080",
        "CLOSED_PLUGINS": ["execute_command"],
    }
    system = SystemSettings.model_validate(data)

    assert system.active_ai_provider_id == "p1"
    assert system.get_provider("p1").type is ProviderType.CLAUDE
    assert system.get_provider("missing") is None
    assert system.get_provider(None) is None
    assert system.model_dump(by_alias=True)["CLOSED_PLUGINS"] == ["execute_command"]


async def test_default_list_models_is_empty(scripted_provider) -> None:
    provider = scripted_provider()
    assert await provider.list_models() == []
    assert provider.name == "OPENAI"
    await provider.aclose()
