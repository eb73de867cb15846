"""Provider capability layer — one interface over several AI vendor protocols."""

from prismflow.llm.base import Provider
from prismflow.llm.factory import ProviderFactory
from prismflow.llm.models import (
    AIResponse,
    Message,
    ProviderConfig,
    ProviderType,
    StreamChunk,
    SystemSettings,
    ToolCall,
    ToolCallDelta,
    ToolSpec,
    Usage,
)

__all__ = [
    "AIResponse",
    "Message",
    "Provider",
    "ProviderConfig",
    "ProviderFactory",
    "ProviderType",
    "StreamChunk",
    "SystemSettings",
    "ToolCall",
    "ToolCallDelta",
    "ToolSpec",
    "Usage",
]
