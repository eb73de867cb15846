"""Tool framework — registry, base types and built-in tools."""

from prismflow.tools.base import BaseTool, ToolParams
from prismflow.tools.execute_command import ExecuteCommandTool
from prismflow.tools.registry import ToolDef, ToolRegistry


def create_default_registry() -> ToolRegistry:
    """Build a registry holding the built-in tools."""
    registry = ToolRegistry()
    registry.register(ExecuteCommandTool())
    return registry


__all__ = [
    "BaseTool",
    "ExecuteCommandTool",
    "ToolDef",
    "ToolParams",
    "ToolRegistry",
    "create_default_registry",
]
