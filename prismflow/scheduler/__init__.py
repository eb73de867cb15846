"""Scheduled task system — models, batch processing and cron scheduling."""

from prismflow.scheduler.batch import BatchProcessor
from prismflow.scheduler.engine import SchedulerEngine
from prismflow.scheduler.ingestion import IngestionService, SourceAdapter
from prismflow.scheduler.models import ScheduleTask, TaskLog, TaskStatus, TaskType

__all__ = [
    "BatchProcessor",
    "IngestionService",
    "ScheduleTask",
    "SchedulerEngine",
    "SourceAdapter",
    "TaskLog",
    "TaskStatus",
    "TaskType",
]
