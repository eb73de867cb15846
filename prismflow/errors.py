"""Exception types shared across the orchestration core."""

from __future__ import annotations


class PrismFlowError(Exception):
    """Base class for all PrismFlow errors."""


class ConfigurationError(PrismFlowError):
    """A referenced provider, agent, workflow or schedule is missing or invalid."""


class TransportError(PrismFlowError):
    """A vendor endpoint returned a non-success status."""

    def __init__(self, provider: str, status_code: int, body: str = "") -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} request failed with status {status_code}: {body[:500]}")


class StreamParseError(PrismFlowError):
    """A single streamed chunk could not be decoded. Never fatal to the stream."""


class ToolExecutionError(PrismFlowError):
    """A tool could not be resolved or its handler raised."""

    def __init__(self, tool_id: str, message: str) -> None:
        self.tool_id = tool_id
        self.message = message
        super().__init__(f"Tool '{tool_id}' failed: {message}")


class ScheduleValidationError(PrismFlowError):
    """A cron expression was rejected before scheduling."""

    def __init__(self, cron: str, reason: str) -> None:
        self.cron = cron
        self.reason = reason
        super().__init__(f"Invalid cron expression '{cron}': {reason}")
