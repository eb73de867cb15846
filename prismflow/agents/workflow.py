"""WorkflowEngine — runs agent steps as a dependency graph."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

from prismflow.errors import ConfigurationError

if TYPE_CHECKING:
    from prismflow.agents.models import WorkflowDefinition, WorkflowStep
    from prismflow.agents.runtime import AgentRuntime
    from prismflow.store import Store

logger = logging.getLogger(__name__)

START = "start"


def build_graph(
    workflow: WorkflowDefinition,
) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
    """Return (predecessors, successors) per step id.

    Edges come from ``next_step_id(s)`` and from ``input_map`` references to
    other steps; references to unknown steps are ignored.
    """
    step_ids = {s.id for s in workflow.steps}
    preds: dict[str, list[str]] = {s.id: [] for s in workflow.steps}
    succs: dict[str, list[str]] = {s.id: [] for s in workflow.steps}

    def link(src: str, dst: str) -> None:
        if src in step_ids and dst in step_ids and src not in preds[dst]:
            preds[dst].append(src)
            succs[src].append(dst)

    for step in workflow.steps:
        for next_id in step.successors:
            link(step.id, next_id)
        for source_id in step.input_map.values():
            if source_id and source_id != START:
                link(source_id, step.id)
    return preds, succs


class WorkflowEngine:
    """Executes workflows wave by wave.

    All steps whose dependencies are complete run concurrently. A failed step
    records ``{"error": ...}`` as its output and does not block successors.
    """

    def __init__(self, store: Store, runtime: AgentRuntime) -> None:
        self._store = store
        self._runtime = runtime

    async def run_workflow(
        self, workflow_id: str, initial_input: Any, date: str | None = None
    ) -> Any:
        """Run a workflow and return the output of its last completed step."""
        workflow = await self._store.get_workflow(workflow_id)
        if workflow is None:
            msg = f"Workflow {workflow_id} not found"
            raise ConfigurationError(msg)

        logger.info("Starting workflow: %s%s", workflow.name or workflow.id, f" for date: {date}" if date else "")
        steps = {s.id: s for s in workflow.steps}
        preds, succs = build_graph(workflow)
        in_degree = {step_id: len(p) for step_id, p in preds.items()}
        results: dict[str, Any] = {START: initial_input}
        completed: set[str] = set()
        ready = [step_id for step_id, degree in in_degree.items() if degree == 0]
        final_output: Any = None

        while ready:
            logger.info("Workflow %s parallel batch: [%s]", workflow.id, ", ".join(ready))
            outcomes = await asyncio.gather(
                *(self._execute_step(steps[step_id], results, preds[step_id], date) for step_id in ready),
                return_exceptions=True,
            )
            next_ready: list[str] = []
            for step_id, outcome in zip(ready, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    logger.error("Workflow step %s failed: %s", step_id, outcome)
                    results[step_id] = {"error": str(outcome)}
                else:
                    results[step_id] = outcome
                    final_output = outcome
                completed.add(step_id)
                for next_id in succs[step_id]:
                    in_degree[next_id] -= 1
                    if in_degree[next_id] == 0 and next_id not in completed:
                        next_ready.append(next_id)
            ready = next_ready

        unreached = set(steps) - completed
        if unreached:
            logger.warning("Workflow %s never reached steps: %s", workflow.id, ", ".join(sorted(unreached)))
        return final_output

    async def _execute_step(
        self,
        step: WorkflowStep,
        results: dict[str, Any],
        predecessors: list[str],
        date: str | None,
    ) -> Any:
        step_input = _step_input(step, results, predecessors)
        input_text = step_input if isinstance(step_input, str) else json.dumps(step_input, ensure_ascii=False, default=str)
        logger.info("[Workflow %s] Input: %s", step.id, input_text[:1000])

        if not step.agent_id:
            return None
        result = await self._runtime.run_agent(step.agent_id, input_text, date, silent=True)
        logger.info("[Workflow %s] Output: %s", step.id, result.content[:1000])
        return result.content


def _step_input(step: WorkflowStep, results: dict[str, Any], predecessors: list[str]) -> Any:
    mapping = {key: source for key, source in step.input_map.items() if key and source}
    if mapping:
        mapped = {key: results.get(source) for key, source in mapping.items()}
        return next(iter(mapped.values())) if len(mapped) == 1 else mapped
    if not predecessors:
        return results[START]
    if len(predecessors) == 1:
        return results.get(predecessors[0])
    return {pred: results.get(pred) for pred in predecessors}
