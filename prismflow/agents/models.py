"""Stored definitions for agents, workflows and remote tool sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from prismflow.llm.models import Message


class AgentDefinition(BaseModel):
    """A named agent: prompt, provider choice and attached capabilities."""

    id: str
    name: str = ""
    description: str = ""
    system_prompt: str = ""
    provider_id: str | None = None
    model: str | None = None
    temperature: float = 0.7
    tool_ids: list[str] = Field(default_factory=list)
    skill_ids: list[str] = Field(default_factory=list)
    mcp_server_ids: list[str] = Field(default_factory=list)


class McpServerConfig(BaseModel):
    """Connection settings for one remote (MCP) tool source."""

    id: str
    name: str = ""
    description: str = ""
    transport_type: Literal["stdio", "sse", "streamable-http"] = "stdio"
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    env: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True


class WorkflowStep(BaseModel):
    """One node of a workflow graph.

    ``input_map`` maps an input key to a source step id, or ``"start"`` for the
    workflow input.
    """

    id: str
    agent_id: str | None = None
    input_map: dict[str, str] = Field(default_factory=dict)
    next_step_id: str | None = None
    next_step_ids: list[str] = Field(default_factory=list)

    @property
    def successors(self) -> list[str]:
        result = list(self.next_step_ids)
        if self.next_step_id and self.next_step_id not in result:
            result.append(self.next_step_id)
        return result


class WorkflowDefinition(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    steps: list[WorkflowStep] = Field(default_factory=list)
    initial_step_id: str | None = None


@dataclass
class AgentResult:
    """Outcome of one agent run.

    Attributes:
        content: Final answer text (never empty).
        rounds: Number of tool-dispatch rounds performed.
        last_tool_result: Raw result of the most recent successful tool call.
        messages: Full conversation history of the run.
    """

    content: str
    rounds: int = 0
    last_tool_result: Any = None
    messages: list[Message] = field(default_factory=list)
