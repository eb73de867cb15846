"""Tests for SchedulerEngine — cron jobs and task execution."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.triggers.cron import CronTrigger

from prismflow.agents.models import AgentResult
from prismflow.config import settings
from prismflow.errors import ConfigurationError, ScheduleValidationError
from prismflow.scheduler.batch import BatchProcessor
from prismflow.scheduler.engine import SchedulerEngine, build_trigger
from prismflow.scheduler.ingestion import SourceAdapter
from prismflow.scheduler.models import ScheduleTask, TaskStatus, TaskType
from prismflow.store import Store

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def ingestion() -> MagicMock:
    mock = MagicMock()
    mock.adapters.return_value = [SourceAdapter("hn", "tech")]
    mock.run_daily_ingestion = AsyncMock()
    mock.run_adapter_ingestion = AsyncMock()
    mock.adapter_status.return_value = {}
    return mock


@pytest.fixture
def runtime() -> MagicMock:
    mock = MagicMock()
    mock.run_agent = AsyncMock(return_value=AgentResult(content='{"ai_summary": "agent summary"}'))
    return mock


@pytest.fixture
def workflows() -> MagicMock:
    mock = MagicMock()
    mock.run_workflow = AsyncMock(return_value={"ai_summary": "workflow summary"})
    return mock


@pytest.fixture
async def engine(store: Store, ingestion, runtime, workflows):
    batch = BatchProcessor(store, ingestion, stagger_seconds=0, timezone="UTC")
    eng = SchedulerEngine(
        store, batch, ingestion=ingestion, runtime=runtime, workflows=workflows, timezone="UTC"
    )
    yield eng
    await eng.stop()


def _task(task_id: str = "t1", cron: str = "0 8 * * *", task_type: TaskType = TaskType.FULL_INGESTION, **kwargs) -> ScheduleTask:
    return ScheduleTask(id=task_id, name=f"Task {task_id}", cron=cron, type=task_type, **kwargs)


async def _seed_today(store: Store, engine: SchedulerEngine, *ids: str) -> None:
    today = engine._batch.window()[1]
    await store.save_items(
        [{"id": i, "title": i, "url": f"https://x/{i}", "category": "tech", "metadata": {}} for i in ids],
        today,
        "hn",
    )


# -- build_trigger -----------------------------------------------------------


def test_build_trigger_five_fields() -> None:
    trigger = build_trigger("30 8 * * 1-5", "UTC")
    assert isinstance(trigger, CronTrigger)
    assert "minute='30'" in str(trigger)
    assert "hour='8'" in str(trigger)


def test_build_trigger_six_fields_has_seconds() -> None:
    trigger = build_trigger("*/10 * * * * *", "UTC")
    assert "second='*/10'" in str(trigger)


@pytest.mark.parametrize("cron", ["not a cron", "61 * * * *", "* * *"])
def test_build_trigger_invalid(cron: str) -> None:
    with pytest.raises(ScheduleValidationError) as exc_info:
        build_trigger(cron, "UTC")
    assert exc_info.value.cron == cron


# -- Schedule management -----------------------------------------------------


async def test_start_loads_enabled_valid_schedules(store: Store, engine: SchedulerEngine) -> None:
    await store.save_schedule(_task("on"))
    await store.save_schedule(_task("off", enabled=False))
    await store.save_schedule(_task("broken", cron="whenever"))

    await engine.start()

    assert engine.running
    assert engine.active_schedule_ids() == ["on"]


async def test_start_schedule_twice_keeps_one_job(engine: SchedulerEngine) -> None:
    engine.start_schedule(_task("t1", cron="0 8 * * *"))
    engine.start_schedule(_task("t1", cron="0 9 * * *"))

    assert engine.active_schedule_ids() == ["t1"]
    jobs = engine._scheduler.get_jobs()
    assert len(jobs) == 1
    assert "hour='9'" in str(jobs[0].trigger)


async def test_invalid_cron_leaves_no_job(engine: SchedulerEngine) -> None:
    engine.start_schedule(_task("t1"))

    with pytest.raises(ScheduleValidationError):
        engine.start_schedule(_task("t1", cron="99 99 * * *"))

    assert engine.active_schedule_ids() == []
    assert engine._scheduler.get_jobs() == []


async def test_save_schedule_follows_enabled(store: Store, engine: SchedulerEngine) -> None:
    await engine.save_schedule(_task("t1"))
    assert engine.active_schedule_ids() == ["t1"]

    await engine.save_schedule(_task("t1", enabled=False))
    assert engine.active_schedule_ids() == []
    assert (await store.get_schedule("t1")).enabled is False


async def test_save_schedule_invalid_cron_still_persisted(store: Store, engine: SchedulerEngine) -> None:
    with pytest.raises(ScheduleValidationError):
        await engine.save_schedule(_task("t1", cron="nope"))
    assert await store.get_schedule("t1") is not None
    assert engine.active_schedule_ids() == []


async def test_delete_schedule(store: Store, engine: SchedulerEngine) -> None:
    await engine.save_schedule(_task("t1"))

    assert await engine.delete_schedule("t1") is True
    assert engine.active_schedule_ids() == []
    assert await store.get_schedule("t1") is None
    assert engine.stop_schedule("t1") is False


async def test_stop_clears_jobs(store: Store, engine: SchedulerEngine) -> None:
    await store.save_schedule(_task("t1"))
    await engine.start()
    await engine.stop()

    assert not engine.running
    assert engine.active_schedule_ids() == []


async def test_scheduled_run_for_deleted_schedule_cancels_job(engine: SchedulerEngine, ingestion) -> None:
    engine.start_schedule(_task("ghost"))

    await engine._run_scheduled("ghost")

    assert engine.active_schedule_ids() == []
    ingestion.run_daily_ingestion.assert_not_awaited()


# -- Execution ---------------------------------------------------------------


async def test_run_now_missing_schedule(engine: SchedulerEngine) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        await engine.run_now("ghost")


async def test_full_ingestion_success(store: Store, engine: SchedulerEngine, ingestion) -> None:
    await store.save_schedule(_task("t1", config={"force": True}))

    log = await engine.run_now("t1")

    ingestion.run_daily_ingestion.assert_awaited_once()
    date_arg, config_arg, on_progress = ingestion.run_daily_ingestion.await_args.args
    assert date_arg is None
    assert config_arg == {"force": True}
    assert callable(on_progress)

    assert log.status is TaskStatus.SUCCESS
    stored = await store.get_task_log(log.id)
    assert stored.status is TaskStatus.SUCCESS
    assert stored.progress == 100
    assert stored.result_count == 0
    assert stored.duration is not None and stored.duration >= 0
    assert stored.end_time is not None

    schedule = await store.get_schedule("t1")
    assert schedule.last_status == "success"
    assert schedule.last_run == log.start_time
    assert schedule.last_error is None


async def test_progress_callback_updates_log(store: Store, engine: SchedulerEngine, ingestion) -> None:
    seen: list[int] = []

    async def fake_ingestion(date, config, on_progress) -> None:
        await on_progress(40)
        running = await store.list_task_logs("t1")
        seen.append(running[0].progress)

    ingestion.run_daily_ingestion.side_effect = fake_ingestion
    await store.save_schedule(_task("t1"))

    await engine.run_now("t1")

    assert seen == [40]


async def test_adapter_task_reports_count(store: Store, engine: SchedulerEngine, ingestion) -> None:
    ingestion.adapter_status.return_value = {"hn": {"count": 7}}
    await store.save_schedule(_task("t1", task_type=TaskType.ADAPTER, target_id="hn"))

    log = await engine.run_now("t1")

    assert ingestion.run_adapter_ingestion.await_args.args[0] == "hn"
    assert log.result_count == 7
    assert log.message == "Adapter hn ingested 7 item(s)"


async def test_failure_recorded_then_cleared(store: Store, engine: SchedulerEngine, ingestion) -> None:
    ingestion.run_daily_ingestion.side_effect = RuntimeError("network down")
    await store.save_schedule(_task("t1"))

    log = await engine.run_now("t1")

    assert log.status is TaskStatus.ERROR
    stored = await store.get_task_log(log.id)
    assert stored.status is TaskStatus.ERROR
    assert stored.message == "network down"
    schedule = await store.get_schedule("t1")
    assert (schedule.last_status, schedule.last_error) == ("error", "network down")

    ingestion.run_daily_ingestion.side_effect = None
    await engine.run_now("t1")
    schedule = await store.get_schedule("t1")
    assert (schedule.last_status, schedule.last_error) == ("success", None)


async def test_missing_component_is_task_error(store: Store) -> None:
    engine = SchedulerEngine(store, BatchProcessor(store, None), timezone="UTC")
    await store.save_schedule(_task("t1"))

    log = await engine.run_now("t1")

    assert log.status is TaskStatus.ERROR
    assert log.message == "Ingestion service not configured"


async def test_execution_keeps_concurrent_schedule_edits(store: Store, engine: SchedulerEngine, ingestion) -> None:
    async def rename_midway(date, config, on_progress) -> None:
        edited = await store.get_schedule("t1")
        edited.name = "Renamed"
        await store.save_schedule(edited)

    ingestion.run_daily_ingestion.side_effect = rename_midway
    await store.save_schedule(_task("t1"))

    await engine.run_now("t1")

    schedule = await store.get_schedule("t1")
    assert schedule.name == "Renamed"
    assert schedule.last_status == "success"


async def test_agent_deal_annotates_items(store: Store, engine: SchedulerEngine, runtime) -> None:
    await _seed_today(store, engine, "a", "b")
    await store.save_schedule(_task("t1", task_type=TaskType.AGENT_DEAL))

    log = await engine.run_now("t1")

    assert log.result_count == 2
    assert log.message == "AI processing completed for 2 items (Fields: ai_summary)"
    agent_id, prompt, _date = runtime.run_agent.await_args.args
    assert agent_id == settings.default_agent_id
    assert prompt.startswith("Title: ")
    assert runtime.run_agent.await_args.kwargs == {"silent": True}
    items = await store.list_partition(engine._batch.window()[1], "hn")
    assert {i["metadata"]["ai_summary"] for i in items} == {"agent summary"}


async def test_workflow_task_runs_per_item(store: Store, engine: SchedulerEngine, workflows) -> None:
    await _seed_today(store, engine, "a")
    await store.save_schedule(
        _task("t1", task_type=TaskType.WORKFLOW, target_id="wf1", config={"target_fields": ["ai_summary", "tags"]})
    )

    log = await engine.run_now("t1")

    assert log.message == "Workflow executed iteratively for 1 items (Fields: ai_summary,tags)"
    workflow_id, workflow_input, date = workflows.run_workflow.await_args.args
    assert workflow_id == "wf1"
    assert workflow_input["date"] == date
    assert workflow_input["content"].startswith("Title: a")
    items = await store.list_partition(date, "hn")
    assert items[0]["metadata"]["ai_summary"] == "workflow summary"


async def test_workflow_string_output_passed_through(store: Store, engine: SchedulerEngine, workflows) -> None:
    workflows.run_workflow.return_value = json.dumps({"ai_summary": "from text"})
    await _seed_today(store, engine, "a")
    await store.save_schedule(_task("t1", task_type=TaskType.WORKFLOW, target_id="wf1"))

    await engine.run_now("t1")

    items = await store.list_partition(engine._batch.window()[1], "hn")
    assert items[0]["metadata"]["ai_summary"] == "from text"
