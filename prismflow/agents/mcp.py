"""Remote tool sources — MCP servers exposed through the agent tool namespace."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from prismflow.errors import ConfigurationError, ToolExecutionError
from prismflow.llm.models import ToolSpec

if TYPE_CHECKING:
    from collections.abc import Iterable

    from prismflow.agents.models import McpServerConfig

logger = logging.getLogger(__name__)

# Schema keywords several vendors reject in function declarations.
UNSUPPORTED_SCHEMA_KEYS = frozenset({
    "$schema",
    "$id",
    "$ref",
    "$defs",
    "definitions",
    "additionalProperties",
    "unevaluatedProperties",
    "minimum",
    "maximum",
    "default",
    "enum",
})

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_name(value: str) -> str:
    """Make *value* usable as a vendor function name."""
    safe = _UNSAFE_NAME_CHARS.sub("_", value)
    if not safe or not safe[0].isalpha():
        safe = f"mcp_{safe}"
    return safe


def clean_schema(schema: Any) -> Any:
    """Recursively drop unsupported keywords from a JSON schema."""
    if isinstance(schema, list):
        return [clean_schema(item) for item in schema]
    if not isinstance(schema, dict):
        return schema
    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key in UNSUPPORTED_SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: clean_schema(prop) for name, prop in value.items()}
        elif key in ("items", "anyOf", "oneOf", "allOf"):
            cleaned[key] = clean_schema(value)
        else:
            cleaned[key] = value
    return cleaned


class _McpConnection:
    """One MCP session owned by a dedicated task.

    The transport and session contexts are entered and exited by the same
    task, so a session opened by one caller can be closed by another.
    """

    def __init__(self, config: McpServerConfig) -> None:
        self.config = config
        self.session: ClientSession | None = None
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._error: BaseException | None = None
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> ClientSession:
        self._task = asyncio.create_task(self._run(), name=f"mcp-{self.config.id}")
        await self._ready.wait()
        if self._error is not None:
            await self._task
            raise self._error
        if self.session is None:
            msg = f"MCP server '{self.config.id}' closed before it was ready"
            raise ConnectionError(msg)
        return self.session

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        try:
            async with AsyncExitStack() as stack:
                read, write = await self._enter_transport(stack)
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self.session = session
                self._ready.set()
                await self._stop.wait()
        except Exception as exc:
            if self._ready.is_set():
                logger.exception("MCP server '%s' disconnected with an error", self.config.id)
            else:
                self._error = exc
        finally:
            self.session = None
            self._ready.set()

    async def _enter_transport(self, stack: AsyncExitStack) -> tuple[Any, Any]:
        config = self.config
        if config.transport_type == "stdio":
            if not config.command:
                msg = f"MCP server '{config.id}' has no command"
                raise ConfigurationError(msg)
            params = StdioServerParameters(command=config.command, args=config.args, env=config.env or None)
            return await stack.enter_async_context(stdio_client(params))
        if config.transport_type == "sse":
            return await stack.enter_async_context(
                sse_client(_require_url(config), headers=config.headers or None)
            )
        read, write, _ = await stack.enter_async_context(
            streamablehttp_client(_require_url(config), headers=config.headers or None)
        )
        return read, write


def _require_url(config: McpServerConfig) -> str:
    if not config.url:
        msg = f"MCP server '{config.id}' has no url"
        raise ConfigurationError(msg)
    return config.url


class McpToolSource:
    """Connects to MCP servers and proxies their tools.

    Sessions are opened lazily and cached per config id until ``close()``.
    Tool ids take the form ``"{config.id}:{tool.name}"``; the provider-facing
    name is a sanitized ``"{config_id}__{tool_name}"``.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ClientSession] = {}
        self._connections: dict[str, _McpConnection] = {}
        self._lock = asyncio.Lock()

    # -- Connections -----------------------------------------------------------

    async def _get_session(self, config: McpServerConfig) -> ClientSession:
        async with self._lock:
            session = self._sessions.get(config.id)
            if session is None:
                session = await self._open(config)
                self._sessions[config.id] = session
            return session

    async def _open(self, config: McpServerConfig) -> ClientSession:
        connection = _McpConnection(config)
        session = await connection.start()
        self._connections[config.id] = connection
        logger.info("Connected to MCP server '%s' via %s", config.id, config.transport_type)
        return session

    async def close(self) -> None:
        """Disconnect every cached session."""
        for config_id, connection in list(self._connections.items()):
            try:
                await connection.stop()
            except Exception:
                logger.exception("Error disconnecting MCP server '%s'", config_id)
        self._connections.clear()
        self._sessions.clear()

    # -- Tools -----------------------------------------------------------------

    async def list_tools(self, configs: Iterable[McpServerConfig]) -> list[ToolSpec]:
        """Catalog the tools of every enabled source; failing sources are skipped."""
        specs: list[ToolSpec] = []
        for config in configs:
            if not config.enabled:
                continue
            try:
                session = await self._get_session(config)
                result = await session.list_tools()
            except Exception:
                logger.exception("Failed to list tools from MCP server '%s'", config.id)
                continue
            for tool in result.tools:
                specs.append(
                    ToolSpec(
                        id=f"{config.id}:{tool.name}",
                        name=f"{sanitize_name(config.id)}__{sanitize_name(tool.name)}",
                        description=tool.description or "",
                        parameters=clean_schema(tool.inputSchema or {"type": "object", "properties": {}}),
                        source_id=config.id,
                    )
                )
        return specs

    async def call_tool(
        self, config: McpServerConfig, tool_name: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Invoke *tool_name* on the server described by *config*."""
        try:
            session = await self._get_session(config)
            result = await session.call_tool(tool_name, arguments)
        except Exception:
            logger.exception("MCP tool '%s:%s' failed", config.id, tool_name)
            raise
        return result.model_dump(mode="json", exclude_none=True)

    async def call_tool_by_source(
        self, source_id: str, tool_name: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Invoke a tool on an already connected source, when its config is gone."""
        session = self._sessions.get(source_id)
        if session is None:
            raise ToolExecutionError(f"{source_id}:{tool_name}", "remote tool source is not connected")
        result = await session.call_tool(tool_name, arguments)
        return result.model_dump(mode="json", exclude_none=True)
