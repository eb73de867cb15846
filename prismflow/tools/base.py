"""Base types for the tool-calling framework."""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class ToolParams(BaseModel):
    """Base class for tool parameter models.

    Subclass with Field() definitions. The JSON schema offered to providers
    is generated via model_json_schema().
    """


class BaseTool(ABC):
    """Abstract base for class-based tool implementations.

    Use this when a tool needs initialization state. For simple stateless
    tools, prefer the @registry.tool() decorator instead.

    Example::

        class MyTool(BaseTool):
            id = "my_tool"
            description = "Does a thing"
            params_model = MyToolParams

            async def execute(self, **kwargs) -> dict:
                return {"ok": True}
    """

    id: str = ""
    name: str = ""
    description: str = ""
    params_model: type[ToolParams] | None = None

    @abstractmethod
    async def execute(self, **kwargs: Any) -> Any:
        """Execute the tool with validated parameters."""
        ...
