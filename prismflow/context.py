"""ServiceContext — builds the process-wide services once and wires them together."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prismflow.agents.mcp import McpToolSource
from prismflow.agents.runtime import AgentRuntime
from prismflow.agents.skills import SkillService
from prismflow.agents.workflow import WorkflowEngine
from prismflow.config import settings
from prismflow.llm.factory import ProviderFactory
from prismflow.scheduler.batch import BatchProcessor
from prismflow.scheduler.engine import SchedulerEngine
from prismflow.store import Store
from prismflow.tools import create_default_registry

if TYPE_CHECKING:
    from pathlib import Path

    from prismflow.scheduler.ingestion import IngestionService
    from prismflow.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class ServiceContext:
    store: Store
    tools: ToolRegistry
    providers: ProviderFactory
    skills: SkillService
    mcp: McpToolSource
    runtime: AgentRuntime
    workflows: WorkflowEngine
    batch: BatchProcessor
    scheduler: SchedulerEngine

    @classmethod
    async def create(
        cls,
        ingestion: IngestionService | None = None,
        db_path: Path | None = None,
    ) -> ServiceContext:
        """Open the store and construct every service.

        The default provider comes from ``ACTIVE_AI_PROVIDER_ID`` in the stored
        system settings; the outbound proxy is ``PROXY_URL`` or, failing that,
        the stored ``API_PROXY``.
        """
        store = Store(db_path)
        await store.initialize()
        system_settings = await store.get_system_settings()

        providers = ProviderFactory(proxy_url=settings.proxy_url or system_settings.api_proxy or "")
        default_provider = providers.resolve_active(system_settings)
        if default_provider is None:
            logger.warning("No active AI provider configured; agents must name their own provider")

        tools = create_default_registry()
        skills = SkillService()
        skills.refresh()
        mcp = McpToolSource()
        runtime = AgentRuntime(
            store=store,
            tool_registry=tools,
            provider_factory=providers,
            skill_service=skills,
            mcp_source=mcp,
            default_provider=default_provider,
        )
        workflows = WorkflowEngine(store, runtime)
        batch = BatchProcessor(store, ingestion)
        scheduler = SchedulerEngine(
            store=store,
            batch=batch,
            ingestion=ingestion,
            runtime=runtime,
            workflows=workflows,
        )
        logger.info(
            "Services ready: %d tool(s), %d skill(s)",
            len(tools.tool_ids),
            len(skills.list_skills()),
        )
        return cls(
            store=store,
            tools=tools,
            providers=providers,
            skills=skills,
            mcp=mcp,
            runtime=runtime,
            workflows=workflows,
            batch=batch,
            scheduler=scheduler,
        )

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.mcp.close()
        await self.providers.aclose()
