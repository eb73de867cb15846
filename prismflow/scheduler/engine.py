"""SchedulerEngine — cron timers and the task execution boundary."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from prismflow.config import settings
from prismflow.errors import ConfigurationError, ScheduleValidationError
from prismflow.scheduler.batch import format_item_prompt
from prismflow.scheduler.models import TaskLog, TaskStatus, TaskType

if TYPE_CHECKING:
    from apscheduler.job import Job

    from prismflow.agents.runtime import AgentRuntime
    from prismflow.agents.workflow import WorkflowEngine
    from prismflow.scheduler.batch import BatchProcessor
    from prismflow.scheduler.ingestion import IngestionService
    from prismflow.scheduler.models import ScheduleTask
    from prismflow.store import Store

logger = logging.getLogger(__name__)


def build_trigger(cron: str, timezone: str) -> CronTrigger:
    """Parse a 5-field crontab, or 6 fields with leading seconds.

    Raises:
        ScheduleValidationError: The expression is malformed.
    """
    fields = cron.split()
    try:
        if len(fields) == 6:
            second, minute, hour, day, month, day_of_week = fields
            return CronTrigger(
                second=second,
                minute=minute,
                hour=hour,
                day=day,
                month=month,
                day_of_week=day_of_week,
                timezone=timezone,
            )
        return CronTrigger.from_crontab(cron, timezone=timezone)
    except ValueError as exc:
        raise ScheduleValidationError(cron, str(exc)) from exc


class SchedulerEngine:
    """Maps enabled ScheduleTasks to APScheduler cron jobs and runs them.

    ``_jobs`` holds exactly one live job per enabled schedule id; starting a
    schedule always cancels its previous job first.

    Args:
        store: Schedules and task logs.
        batch: Per-item processor for WORKFLOW and AGENT_DEAL tasks.
        ingestion: Ingestion layer for FULL_INGESTION and ADAPTER tasks.
        runtime: Agent runtime for AGENT_DEAL tasks.
        workflows: Workflow engine for WORKFLOW tasks.
        timezone: IANA timezone string (default from settings).
    """

    def __init__(
        self,
        store: Store,
        batch: BatchProcessor,
        ingestion: IngestionService | None = None,
        runtime: AgentRuntime | None = None,
        workflows: WorkflowEngine | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._batch = batch
        self._ingestion = ingestion
        self._runtime = runtime
        self._workflows = workflows
        self._timezone = timezone or settings.scheduler_timezone
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._jobs: dict[str, Job] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Start the scheduler and create jobs for every enabled schedule."""
        self._scheduler.start()
        self._running = True
        schedules = await self._store.list_schedules()
        for task in schedules:
            if not task.enabled:
                continue
            try:
                self.start_schedule(task)
            except ScheduleValidationError:
                continue
        logger.info(
            "Scheduler started with %d active schedule(s) (tz=%s)",
            len(self._jobs),
            self._timezone,
        )

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            self._jobs.clear()
            logger.info("Scheduler stopped")

    # -- Schedule management ---------------------------------------------------

    def start_schedule(self, task: ScheduleTask) -> None:
        """(Re)create the cron job for *task*.

        Raises:
            ScheduleValidationError: The cron expression is invalid; no job
                is registered for the task afterwards.
        """
        self.stop_schedule(task.id)
        try:
            trigger = build_trigger(task.cron, self._timezone)
        except ScheduleValidationError as exc:
            logger.error("Invalid cron for schedule %s (%s): %s", task.name, task.id, exc.reason)
            raise
        self._jobs[task.id] = self._scheduler.add_job(
            self._run_scheduled,
            trigger=trigger,
            id=task.id,
            name=task.name,
            args=[task.id],
            misfire_grace_time=None,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled task: %s (%s) with cron '%s'", task.name, task.id, task.cron)

    def stop_schedule(self, task_id: str) -> bool:
        """Cancel the job for *task_id*. Returns True if one was active."""
        job = self._jobs.pop(task_id, None)
        if job is None:
            return False
        try:
            self._scheduler.remove_job(task_id)
        except JobLookupError:
            logger.debug("Job %s not found in scheduler (may already be removed)", task_id)
        logger.info("Stopped schedule: %s", task_id)
        return True

    def active_schedule_ids(self) -> list[str]:
        return list(self._jobs)

    async def save_schedule(self, task: ScheduleTask) -> None:
        """Persist *task* and bring its timer in line with ``enabled``."""
        await self._store.save_schedule(task)
        if task.enabled:
            self.start_schedule(task)
        else:
            self.stop_schedule(task.id)

    async def delete_schedule(self, task_id: str) -> bool:
        self.stop_schedule(task_id)
        return await self._store.delete_schedule(task_id)

    async def run_now(self, task_id: str) -> TaskLog:
        """Execute a schedule immediately, outside its timer."""
        task = await self._store.get_schedule(task_id)
        if task is None:
            msg = f"Schedule {task_id} not found"
            raise ConfigurationError(msg)
        return await self.execute_task(task)

    async def _run_scheduled(self, task_id: str) -> None:
        """Callback invoked by APScheduler."""
        task = await self._store.get_schedule(task_id)
        if task is None:
            logger.warning("Schedule not found, cancelling its job: %s", task_id)
            self.stop_schedule(task_id)
            return
        await self.execute_task(task)

    # -- Execution -------------------------------------------------------------

    async def execute_task(self, task: ScheduleTask) -> TaskLog:
        """Run one task body between a ``running`` log and its final status.

        Never raises for failures of the task body; they are recorded on the
        TaskLog and on the schedule.
        """
        logger.info("Executing scheduled task: %s (%s)", task.name, task.type.value)
        started = datetime.now(UTC)
        log = TaskLog(task_id=task.id, task_name=task.name, start_time=started.isoformat())
        log_id = await self._store.create_task_log(log)

        try:
            result_count, message = await self._dispatch(task, log_id)
        except Exception as exc:
            logger.exception("Scheduled task %s failed", task.name)
            log.status = TaskStatus.ERROR
            log.message = str(exc)
            await self._finish(log, started, error=str(exc))
            return log

        log.status = TaskStatus.SUCCESS
        log.progress = 100
        log.message = message or "Completed successfully"
        log.result_count = result_count
        await self._finish(log, started)
        logger.info("Scheduled task %s finished: %s", task.name, log.message)
        return log

    async def _finish(self, log: TaskLog, started: datetime, error: str | None = None) -> None:
        ended = datetime.now(UTC)
        log.end_time = ended.isoformat()
        log.duration = int((ended - started).total_seconds() * 1000)
        fields: dict[str, Any] = {
            "end_time": log.end_time,
            "duration": log.duration,
            "status": log.status,
            "message": log.message,
        }
        if error is None:
            fields["progress"] = log.progress
            fields["result_count"] = log.result_count
        await self._store.update_task_log(log.id, **fields)

        # Re-read so edits made while the task ran are kept.
        task = await self._store.get_schedule(log.task_id)
        if task is None:
            return
        task.last_run = log.start_time
        task.last_status = "error" if error else "success"
        task.last_error = error
        await self._store.save_schedule(task)

    async def _dispatch(self, task: ScheduleTask, log_id: int) -> tuple[int, str]:
        """Route to the task body. Returns (result_count, message)."""

        async def on_progress(progress: int) -> None:
            await self._store.update_task_log(log_id, progress=progress)

        if task.type is TaskType.FULL_INGESTION:
            ingestion = self._require(self._ingestion, "Ingestion service")
            await ingestion.run_daily_ingestion(None, task.config, on_progress)
            return 0, "Full ingestion completed"

        if task.type is TaskType.ADAPTER:
            ingestion = self._require(self._ingestion, "Ingestion service")
            await ingestion.run_adapter_ingestion(task.target_id, None, task.config, on_progress)
            count = ingestion.adapter_status().get(task.target_id, {}).get("count") or 0
            return count, f"Adapter {task.target_id} ingested {count} item(s)"

        fields = ",".join(task.target_fields)
        if task.type is TaskType.WORKFLOW:
            workflows = self._require(self._workflows, "Workflow engine")

            async def run_workflow(item: dict[str, Any], date: str) -> str:
                workflow_input = {"content": format_item_prompt(item), "date": date}
                output = await workflows.run_workflow(task.target_id, workflow_input, date)
                return output if isinstance(output, str) else json.dumps(output, ensure_ascii=False, default=str)

            count = await self._batch.process(task, log_id, run_workflow)
            return count, f"Workflow executed iteratively for {count} items (Fields: {fields})"

        if task.type is TaskType.AGENT_DEAL:
            runtime = self._require(self._runtime, "Agent runtime")
            agent_id = task.target_id or settings.default_agent_id

            async def run_agent(item: dict[str, Any], date: str) -> str:
                result = await runtime.run_agent(agent_id, format_item_prompt(item), date, silent=True)
                return result.content

            count = await self._batch.process(task, log_id, run_agent)
            return count, f"AI processing completed for {count} items (Fields: {fields})"

        msg = f"Unknown task type: {task.type}"
        raise ValueError(msg)

    @staticmethod
    def _require(component: Any, label: str) -> Any:
        if component is None:
            msg = f"{label} not configured"
            raise ConfigurationError(msg)
        return component
