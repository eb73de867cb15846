"""Store — aiosqlite persistence for every record the orchestration core touches."""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

from prismflow.agents.models import AgentDefinition, McpServerConfig, WorkflowDefinition
from prismflow.config import settings
from prismflow.llm.models import SystemSettings
from prismflow.scheduler.models import ScheduleTask, TaskLog, TaskStatus

if TYPE_CHECKING:
    from pathlib import Path

    from pydantic import BaseModel

logger = logging.getLogger(__name__)

SYSTEM_SETTINGS_KEY = "system_settings"
INTERRUPTED_MESSAGE = "Task interrupted by process restart"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT,
    expires_at INTEGER
);
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS mcp_configs (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS schedules (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at INTEGER
);
CREATE TABLE IF NOT EXISTS task_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL,
    task_name TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT,
    duration INTEGER,
    status TEXT NOT NULL,
    progress INTEGER DEFAULT 0,
    message TEXT,
    result_count INTEGER
);
CREATE TABLE IF NOT EXISTS source_data (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    url TEXT,
    description TEXT,
    published_date TEXT,
    source TEXT NOT NULL,
    category TEXT,
    author TEXT,
    metadata TEXT,
    fetched_at TEXT,
    ingestion_date TEXT,
    adapter_name TEXT
);
CREATE INDEX IF NOT EXISTS idx_source_data_partition
    ON source_data(ingestion_date, adapter_name);
CREATE INDEX IF NOT EXISTS idx_task_logs_task ON task_logs(task_id, start_time);
"""

_DEFINITION_TABLES = {"agents", "workflows", "mcp_configs"}
_TASK_LOG_COLUMNS = {
    "end_time",
    "duration",
    "status",
    "progress",
    "message",
    "result_count",
}


def _check_table(table: str) -> None:
    if table not in _DEFINITION_TABLES:
        msg = f"Unknown definition table: {table}"
        raise ValueError(msg)


class Store:
    """Persists definitions, schedules, run logs and ingested items in SQLite.

    Pass an explicit *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    The first connection creates the schema and marks any task log left in
    ``running`` by a previous process as ``interrupted``.
    """

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path))
        if not self._initialised:
            await db.executescript(_SCHEMA)
            cursor = await db.execute(
                "UPDATE task_logs SET status = ?, message = ? WHERE status = ?",
                (TaskStatus.INTERRUPTED.value, INTERRUPTED_MESSAGE, TaskStatus.RUNNING.value),
            )
            await db.commit()
            if cursor.rowcount > 0:
                logger.warning("Marked %d running task log(s) as interrupted", cursor.rowcount)
            self._initialised = True
        return db

    async def initialize(self) -> None:
        """Create the schema and sweep stale running logs now."""
        db = await self._connect()
        await db.close()

    # -- Key/value -------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """Return the JSON value stored under *key*, or None if missing or expired."""
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT value, expires_at FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at is not None and expires_at < int(time.time() * 1000):
                await db.execute("DELETE FROM kv WHERE key = ?", (key,))
                await db.commit()
                return None
            return json.loads(value)
        finally:
            await db.close()

    async def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        expires_at = int((time.time() + ttl_seconds) * 1000) if ttl_seconds else None
        db = await self._connect()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, json.dumps(value), expires_at),
            )
            await db.commit()
        finally:
            await db.close()

    async def delete(self, key: str) -> None:
        db = await self._connect()
        try:
            await db.execute("DELETE FROM kv WHERE key = ?", (key,))
            await db.commit()
        finally:
            await db.close()

    async def get_system_settings(self) -> SystemSettings:
        data = await self.get(SYSTEM_SETTINGS_KEY)
        return SystemSettings.model_validate(data or {})

    async def save_system_settings(self, system_settings: SystemSettings) -> None:
        await self.put(
            SYSTEM_SETTINGS_KEY,
            system_settings.model_dump(mode="json", by_alias=True),
        )

    # -- Definitions -----------------------------------------------------------

    async def _save_record(self, table: str, record: BaseModel) -> None:
        _check_table(table)
        db = await self._connect()
        try:
            await db.execute(
                f"INSERT OR REPLACE INTO {table} (id, data) VALUES (?, ?)",  # noqa: S608
                (record.id, record.model_dump_json()),
            )
            await db.commit()
        finally:
            await db.close()

    async def _get_record(self, table: str, record_id: str) -> str | None:
        _check_table(table)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT data FROM {table} WHERE id = ?",  # noqa: S608
                (record_id,),
            )
            row = await cursor.fetchone()
            return row[0] if row else None
        finally:
            await db.close()

    async def _list_records(self, table: str) -> list[str]:
        _check_table(table)
        db = await self._connect()
        try:
            cursor = await db.execute(f"SELECT data FROM {table} ORDER BY id")  # noqa: S608
            return [row[0] for row in await cursor.fetchall()]
        finally:
            await db.close()

    async def _delete_record(self, table: str, record_id: str) -> bool:
        _check_table(table)
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"DELETE FROM {table} WHERE id = ?",  # noqa: S608
                (record_id,),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def save_agent(self, agent: AgentDefinition) -> None:
        await self._save_record("agents", agent)

    async def get_agent(self, agent_id: str) -> AgentDefinition | None:
        raw = await self._get_record("agents", agent_id)
        return AgentDefinition.model_validate_json(raw) if raw else None

    async def list_agents(self) -> list[AgentDefinition]:
        return [AgentDefinition.model_validate_json(raw) for raw in await self._list_records("agents")]

    async def delete_agent(self, agent_id: str) -> bool:
        return await self._delete_record("agents", agent_id)

    async def save_workflow(self, workflow: WorkflowDefinition) -> None:
        await self._save_record("workflows", workflow)

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition | None:
        raw = await self._get_record("workflows", workflow_id)
        return WorkflowDefinition.model_validate_json(raw) if raw else None

    async def list_workflows(self) -> list[WorkflowDefinition]:
        return [
            WorkflowDefinition.model_validate_json(raw)
            for raw in await self._list_records("workflows")
        ]

    async def delete_workflow(self, workflow_id: str) -> bool:
        return await self._delete_record("workflows", workflow_id)

    async def save_mcp_config(self, config: McpServerConfig) -> None:
        await self._save_record("mcp_configs", config)

    async def get_mcp_config(self, config_id: str) -> McpServerConfig | None:
        raw = await self._get_record("mcp_configs", config_id)
        return McpServerConfig.model_validate_json(raw) if raw else None

    async def list_mcp_configs(self) -> list[McpServerConfig]:
        return [
            McpServerConfig.model_validate_json(raw)
            for raw in await self._list_records("mcp_configs")
        ]

    async def delete_mcp_config(self, config_id: str) -> bool:
        return await self._delete_record("mcp_configs", config_id)

    # -- Schedules -------------------------------------------------------------

    async def save_schedule(self, task: ScheduleTask) -> None:
        db = await self._connect()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO schedules (id, data, updated_at) VALUES (?, ?, ?)",
                (task.id, task.to_json(), int(time.time() * 1000)),
            )
            await db.commit()
        finally:
            await db.close()

    async def get_schedule(self, task_id: str) -> ScheduleTask | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT data FROM schedules WHERE id = ?", (task_id,))
            row = await cursor.fetchone()
            return ScheduleTask.from_json(row[0]) if row else None
        finally:
            await db.close()

    async def list_schedules(self) -> list[ScheduleTask]:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT data FROM schedules ORDER BY updated_at")
            return [ScheduleTask.from_json(row[0]) for row in await cursor.fetchall()]
        finally:
            await db.close()

    async def delete_schedule(self, task_id: str) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM schedules WHERE id = ?", (task_id,))
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- Task logs -------------------------------------------------------------

    async def create_task_log(self, log: TaskLog) -> int:
        """Insert a run record and return its id."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                INSERT INTO task_logs
                    (task_id, task_name, start_time, end_time, duration,
                     status, progress, message, result_count)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                log.to_row(),
            )
            await db.commit()
            log.id = cursor.lastrowid
            return log.id
        finally:
            await db.close()

    async def update_task_log(self, log_id: int, **fields: Any) -> None:
        """Update selected columns of a run record."""
        unknown = set(fields) - _TASK_LOG_COLUMNS
        if unknown:
            msg = f"Unknown task log field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        if not fields:
            return
        if isinstance(fields.get("status"), TaskStatus):
            fields["status"] = fields["status"].value
        assignments = ", ".join(f"{name} = ?" for name in fields)
        db = await self._connect()
        try:
            await db.execute(
                f"UPDATE task_logs SET {assignments} WHERE id = ?",  # noqa: S608
                (*fields.values(), log_id),
            )
            await db.commit()
        finally:
            await db.close()

    async def get_task_log(self, log_id: int) -> TaskLog | None:
        db = await self._connect()
        try:
            cursor = await db.execute("SELECT * FROM task_logs WHERE id = ?", (log_id,))
            row = await cursor.fetchone()
            return TaskLog.from_row(row) if row else None
        finally:
            await db.close()

    async def list_task_logs(
        self, task_id: str | None = None, limit: int = 50, offset: int = 0
    ) -> list[TaskLog]:
        """Return run records, newest first."""
        query = "SELECT * FROM task_logs"
        params: list[Any] = []
        if task_id:
            query += " WHERE task_id = ?"
            params.append(task_id)
        query += " ORDER BY start_time DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        db = await self._connect()
        try:
            cursor = await db.execute(query, params)
            return [TaskLog.from_row(row) for row in await cursor.fetchall()]
        finally:
            await db.close()

    # -- Ingested items --------------------------------------------------------

    async def save_items(
        self, items: list[dict[str, Any]], ingestion_date: str, adapter_name: str
    ) -> int:
        """Write a partition's items back in one transaction, replacing existing rows."""
        fetched_at = datetime.now(UTC).isoformat()
        rows = [
            (
                item["id"],
                item.get("title") or "",
                item.get("url"),
                item.get("description"),
                item.get("published_date"),
                item.get("source") or adapter_name,
                item.get("category"),
                item.get("author"),
                json.dumps(item.get("metadata") or {}),
                fetched_at,
                ingestion_date,
                adapter_name,
            )
            for item in items
        ]
        db = await self._connect()
        try:
            await db.executemany(
                """
                INSERT OR REPLACE INTO source_data
                    (id, title, url, description, published_date, source, category,
                     author, metadata, fetched_at, ingestion_date, adapter_name)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )
            await db.commit()
            return len(rows)
        finally:
            await db.close()

    async def list_partition(
        self,
        ingestion_date: str,
        adapter_name: str,
        category: str | None = None,
        limit: int = 1000,
    ) -> list[dict[str, Any]]:
        """Return the items of one partition as plain dicts."""
        query = (
            "SELECT id, title, url, description, published_date, source, category, "
            "author, metadata FROM source_data WHERE ingestion_date = ? AND adapter_name = ?"
        )
        params: list[Any] = [ingestion_date, adapter_name]
        if category:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY published_date DESC LIMIT ?"
        params.append(limit)
        db = await self._connect()
        try:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        finally:
            await db.close()
        return [
            {
                "id": row[0],
                "title": row[1],
                "url": row[2],
                "description": row[3],
                "published_date": row[4],
                "source": row[5],
                "category": row[6],
                "author": row[7],
                "metadata": json.loads(row[8]) if row[8] else {},
            }
            for row in rows
        ]
