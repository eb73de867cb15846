"""ScheduleTask and TaskLog data models."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

DEFAULT_TARGET_FIELD = "ai_summary"


class TaskType(StrEnum):
    ADAPTER = "ADAPTER"
    WORKFLOW = "WORKFLOW"
    FULL_INGESTION = "FULL_INGESTION"
    AGENT_DEAL = "AGENT_DEAL"


class TaskStatus(StrEnum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    INTERRUPTED = "interrupted"


@dataclass
class ScheduleTask:
    """A cron-triggered unit of work.

    Attributes:
        id: Unique identifier.
        name: Human-readable name.
        cron: Crontab expression, 5 fields or 6 with leading seconds.
        type: Which task body runs (see ``TaskType``).
        target_id: Adapter, workflow or agent id, depending on ``type``.
        config: Runtime overrides. Recognized keys: ``target_fields``,
            ``target_field`` and ``delay`` (ms between a worker's items);
            everything is also passed to the ingestion service.
        enabled: Whether the task has a live timer.
        last_run: ISO 8601 start time of the last execution.
        last_status: ``"success"`` or ``"error"``.
        last_error: Message of the last failure.
    """

    id: str
    name: str
    cron: str
    type: TaskType
    target_id: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    last_run: str | None = None
    last_status: str | None = None
    last_error: str | None = None

    def __post_init__(self) -> None:
        self.type = TaskType(self.type)
        if self.config is None:
            self.config = {}

    @property
    def target_fields(self) -> list[str]:
        """Metadata fields a batch run must fill in."""
        fields = self.config.get("target_fields")
        if fields:
            return list(fields)
        return [self.config.get("target_field") or DEFAULT_TARGET_FIELD]

    # -- Serialization ---------------------------------------------------------

    def to_json(self) -> str:
        data = asdict(self)
        data["type"] = self.type.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> ScheduleTask:
        data = json.loads(raw)
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class TaskLog:
    """One execution record of a ScheduleTask.

    Created as ``running`` before the task body starts; ``duration`` is in
    milliseconds.
    """

    task_id: str
    task_name: str
    start_time: str = ""
    status: TaskStatus = TaskStatus.RUNNING
    progress: int = 0
    end_time: str | None = None
    duration: int | None = None
    message: str | None = None
    result_count: int | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        self.status = TaskStatus(self.status)
        if not self.start_time:
            self.start_time = datetime.now(UTC).isoformat()

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``task_logs`` insert column order."""
        return (
            self.task_id,
            self.task_name,
            self.start_time,
            self.end_time,
            self.duration,
            self.status.value,
            self.progress,
            self.message,
            self.result_count,
        )

    @classmethod
    def from_row(cls, row: tuple) -> TaskLog:
        """Deserialize from a ``SELECT *`` row of ``task_logs``."""
        return cls(
            id=row[0],
            task_id=row[1],
            task_name=row[2] or "",
            start_time=row[3],
            end_time=row[4],
            duration=row[5],
            status=row[6],
            progress=row[7] or 0,
            message=row[8],
            result_count=row[9],
        )


def make_task_id() -> str:
    """Generate a new schedule ID."""
    return uuid.uuid4().hex
