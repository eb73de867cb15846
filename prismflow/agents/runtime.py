"""AgentRuntime — bounded multi-round tool-calling conversation for one request."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from prismflow.agents.models import AgentResult
from prismflow.config import settings
from prismflow.errors import ConfigurationError, ToolExecutionError
from prismflow.llm.models import Message, ToolCall
from prismflow.tools.execute_command import ExecuteCommandTool

if TYPE_CHECKING:
    from prismflow.agents.mcp import McpToolSource
    from prismflow.agents.models import AgentDefinition, McpServerConfig
    from prismflow.agents.skills import SkillService
    from prismflow.llm.base import Provider
    from prismflow.llm.factory import ProviderFactory
    from prismflow.llm.models import SystemSettings, ToolSpec
    from prismflow.store import Store
    from prismflow.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

EMPTY_RESPONSE = "No response generated (AI returned empty content)"


class AgentRuntime:
    """Runs an agent definition against a provider with its tools attached.

    Each run keeps an append-only history, starting with the system and user
    turns. Every model turn is appended; when it requests tools, each call is
    dispatched independently and answered with one tool turn. The loop ends
    on a turn without tool calls or after ``max_rounds`` dispatch rounds.

    Args:
        store: Source of agent definitions, MCP configs and system settings.
        tool_registry: Local tools.
        provider_factory: Builds per-agent providers from system settings.
        skill_service: Renders the skills prompt block.
        mcp_source: Remote tool sources.
        default_provider: Used when an agent names no (known) provider.
        max_rounds: Dispatch round cap (default from settings).
    """

    def __init__(
        self,
        store: Store,
        tool_registry: ToolRegistry,
        provider_factory: ProviderFactory,
        skill_service: SkillService,
        mcp_source: McpToolSource,
        default_provider: Provider | None = None,
        max_rounds: int | None = None,
    ) -> None:
        self._store = store
        self._tools = tool_registry
        self._factory = provider_factory
        self._skills = skill_service
        self._mcp = mcp_source
        self.default_provider = default_provider
        self._max_rounds = max_rounds or settings.max_agent_rounds

    async def run_agent(
        self,
        agent_id: str,
        input_text: str,
        date: str | None = None,
        *,
        silent: bool = False,
    ) -> AgentResult:
        """Load an agent by id and run it on *input_text*."""
        agent = await self._store.get_agent(agent_id)
        if agent is None:
            msg = f"Agent {agent_id} not found"
            raise ConfigurationError(msg)
        return await self.run(agent, input_text, date, silent=silent)

    async def run(
        self,
        agent: AgentDefinition,
        input_text: str,
        date: str | None = None,
        *,
        silent: bool = False,
    ) -> AgentResult:
        log = logger.debug if silent else logger.info
        log("Running agent: %s%s", agent.name or agent.id, f" for date: {date}" if date else "")

        system_settings = await self._store.get_system_settings()
        provider = self._resolve_provider(agent, system_settings, log)
        catalog, mcp_configs = await self._collect_tools(agent, system_settings)

        system_prompt = f"{self._skills.build_prompt(agent.skill_ids)}\n{agent.system_prompt}"
        if date:
            system_prompt += f"\n\nCurrent processing date: {date}"

        messages: list[Message] = [Message.system(system_prompt), Message.user(input_text)]
        last_tool_result: Any = None
        final_text = ""
        rounds = 0

        while rounds < self._max_rounds:
            log("[Agent %s] Round %d starting", agent.id, rounds + 1)
            response = await provider.generate_with_tools(messages, catalog)
            messages.append(
                Message(
                    role="assistant",
                    content=response.content or None,
                    tool_calls=list(response.tool_calls),
                    raw_continuation=response.raw_continuation,
                )
            )
            if not response.tool_calls:
                final_text = response.content or ""
                break

            log(
                "[Agent %s] Round %d: %d tool call(s): %s",
                agent.id,
                rounds + 1,
                len(response.tool_calls),
                ", ".join(tc.name for tc in response.tool_calls),
            )
            for call in response.tool_calls:
                try:
                    result = await self._dispatch(call, catalog, mcp_configs)
                except Exception as exc:
                    message = exc.message if isinstance(exc, ToolExecutionError) else str(exc)
                    logger.error("[Agent %s] Tool %s failed: %s", agent.id, call.name, message)
                    messages.append(Message.tool_result(call.id, call.name, f"Error: {message}"))
                    continue
                messages.append(Message.tool_result(call.id, call.name, _to_text(result)))
                last_tool_result = result
            rounds += 1

        if rounds >= self._max_rounds:
            logger.warning("[Agent %s] Stopped after reaching %d rounds", agent.id, rounds)

        content = final_text
        if not content.strip() and last_tool_result is not None:
            log("[Agent %s] Final content is empty, using last tool result", agent.id)
            content = fallback_content(last_tool_result)
        if not content.strip():
            logger.error("[Agent %s] Failed to generate any content after %d round(s)", agent.id, rounds)
            content = EMPTY_RESPONSE

        return AgentResult(
            content=content,
            rounds=rounds,
            last_tool_result=last_tool_result,
            messages=messages,
        )

    # -- Setup -----------------------------------------------------------------

    def _resolve_provider(
        self, agent: AgentDefinition, system_settings: SystemSettings, log: Any
    ) -> Provider:
        config = system_settings.get_provider(agent.provider_id)
        if config is not None and not config.enabled:
            logger.warning("Provider %s for agent %s is disabled, using default", config.id, agent.id)
        elif config is not None:
            log("Initializing provider %s for agent %s (proxy=%s)", config.id, agent.id, config.use_proxy)
            return self._factory.create(config, agent.model)
        if self.default_provider is None:
            msg = f"No provider available for agent {agent.id}"
            raise ConfigurationError(msg)
        return self.default_provider

    async def _collect_tools(
        self, agent: AgentDefinition, system_settings: SystemSettings
    ) -> tuple[list[ToolSpec], list[McpServerConfig]]:
        tool_ids = list(dict.fromkeys(agent.tool_ids))
        if agent.skill_ids and ExecuteCommandTool.id not in tool_ids:
            tool_ids.append(ExecuteCommandTool.id)
        closed = set(system_settings.closed_plugins)
        catalog = self._tools.specs(t for t in tool_ids if t not in closed and t in self._tools)

        mcp_configs: list[McpServerConfig] = []
        for server_id in agent.mcp_server_ids:
            config = await self._store.get_mcp_config(server_id)
            if config is not None:
                mcp_configs.append(config)
            else:
                logger.warning("MCP server %s for agent %s not found", server_id, agent.id)
        if mcp_configs:
            catalog.extend(await self._mcp.list_tools(mcp_configs))
        return catalog, mcp_configs

    # -- Dispatch --------------------------------------------------------------

    async def _dispatch(
        self, call: ToolCall, catalog: list[ToolSpec], mcp_configs: list[McpServerConfig]
    ) -> Any:
        # A local tool shadows any remote tool with the same name.
        if call.name in self._tools:
            return await self._tools.call_tool(call.name, call.arguments)

        spec = next((t for t in catalog if t.name == call.name), None)
        if spec is None:
            raise ToolExecutionError(call.name, "tool definition not found")
        if spec.source_id is None:
            return await self._tools.call_tool(spec.id, call.arguments)

        config = next((c for c in mcp_configs if c.id == spec.source_id), None)
        if config is not None:
            return await self._mcp.call_tool(config, spec.original_name, call.arguments)
        return await self._mcp.call_tool_by_source(spec.source_id, spec.original_name, call.arguments)


def _to_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def fallback_content(result: Any) -> str:
    """Derive answer text from a tool result when the model returned none."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list):
            text = "\n".join(
                entry.get("text", "")
                for entry in content
                if isinstance(entry, dict) and entry.get("type") == "text"
            )
            return text if text.strip() else _to_text(content)
        fallback = result.get("content") or result.get("html") or result.get("summary")
        if fallback:
            return _to_text(fallback)
    return _to_text(result)
