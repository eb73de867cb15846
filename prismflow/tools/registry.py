"""Tool registry — catalog of locally executable tools."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from prismflow.errors import ToolExecutionError
from prismflow.llm.models import ToolSpec

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from prismflow.tools.base import BaseTool, ToolParams

logger = logging.getLogger(__name__)


@dataclass
class ToolDef:
    """Internal representation of a registered tool."""

    id: str
    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    params_model: type[ToolParams] | None = None
    schema: dict[str, Any] | None = None

    @property
    def parameters(self) -> dict[str, Any]:
        if self.params_model is not None:
            return self.params_model.model_json_schema()
        return self.schema or {"type": "object", "properties": {}}

    def to_spec(self) -> ToolSpec:
        return ToolSpec(
            id=self.id,
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


class ToolRegistry:
    """Catalog mapping tool id to description, parameter schema and handler.

    Constructed once per process and passed to whatever needs it.
    Supports two registration styles:

    1. Decorator (for simple stateless tools)::

        @registry.tool(id="my_tool", description="Does a thing")
        async def my_tool() -> dict:
            return {"ok": True}

    2. Class-based (for tools that need state)::

        class MyTool(BaseTool):
            id = "my_tool"
            ...
        registry.register(MyTool())

    Registering an id twice replaces the earlier tool.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def tool(
        self,
        *,
        id: str,  # noqa: A002
        description: str,
        name: str | None = None,
        params_model: type[ToolParams] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> Callable:
        """Decorator to register an async function as a tool."""

        def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{id}' must be an async function"
                raise TypeError(msg)
            self._add(
                ToolDef(
                    id=id,
                    name=name or id,
                    description=description,
                    handler=fn,
                    params_model=params_model,
                    schema=schema,
                )
            )
            return fn

        return decorator

    def register(self, tool_instance: BaseTool) -> None:
        """Register a class-based tool instance."""
        self._add(
            ToolDef(
                id=tool_instance.id,
                name=tool_instance.name or tool_instance.id,
                description=tool_instance.description,
                handler=tool_instance.execute,
                params_model=tool_instance.params_model,
            )
        )

    def _add(self, tool_def: ToolDef) -> None:
        if tool_def.id in self._tools:
            logger.warning("Tool '%s' is already registered; overwriting", tool_def.id)
        self._tools[tool_def.id] = tool_def

    def get(self, tool_id: str) -> ToolDef | None:
        """Look up a tool by id."""
        return self._tools.get(tool_id)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    @property
    def tool_ids(self) -> list[str]:
        """All registered tool ids."""
        return list(self._tools.keys())

    def list_catalog(self) -> list[dict[str, Any]]:
        """Describe every tool without exposing handlers."""
        return [
            {
                "id": t.id,
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            }
            for t in self._tools.values()
        ]

    def specs(self, tool_ids: Iterable[str]) -> list[ToolSpec]:
        """Provider-facing specs for the given ids; unknown ids are skipped."""
        result: list[ToolSpec] = []
        for tool_id in tool_ids:
            tool_def = self._tools.get(tool_id)
            if tool_def is None:
                logger.warning("Requested tool '%s' is not registered", tool_id)
                continue
            result.append(tool_def.to_spec())
        return result

    async def call_tool(self, tool_id: str, arguments: dict[str, Any]) -> Any:
        """Resolve a tool by id and await its handler.

        Raises:
            ToolExecutionError: The id is unknown, the arguments fail
                validation, or the handler raised.
        """
        tool_def = self._tools.get(tool_id)
        if tool_def is None:
            raise ToolExecutionError(tool_id, "unknown tool")

        logger.info("Tool '%s' called with %s", tool_id, arguments)
        t0 = time.monotonic()

        try:
            if tool_def.params_model is not None:
                kwargs = tool_def.params_model(**arguments).model_dump()
            else:
                kwargs = dict(arguments)
        except ValidationError as exc:
            raise ToolExecutionError(tool_id, f"invalid arguments: {exc}") from exc

        try:
            result = await tool_def.handler(**kwargs)
        except Exception as exc:
            elapsed = time.monotonic() - t0
            logger.exception("Tool '%s' failed in %.2fs", tool_id, elapsed)
            raise ToolExecutionError(tool_id, str(exc)) from exc

        logger.info("Tool '%s' succeeded in %.2fs", tool_id, time.monotonic() - t0)
        return result
