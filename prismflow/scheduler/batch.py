"""BatchProcessor — annotates stored items with bounded concurrency."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date as date_cls
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from prismflow.config import settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from prismflow.scheduler.ingestion import IngestionService, SourceAdapter
    from prismflow.scheduler.models import ScheduleTask
    from prismflow.store import Store

    ItemHandler = Callable[[dict[str, Any], str], Awaitable[str]]

logger = logging.getLogger(__name__)

KNOWN_FIELDS = ("ai_summary", "ai_score", "tags")

_CODE_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?|\n?\s*```\s*$")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class AnnotationParseError(ValueError):
    pass


def format_item_prompt(item: dict[str, Any]) -> str:
    """Render an item as the per-item agent input."""
    metadata = item.get("metadata") or {}
    description = metadata.get("content_html") or item.get("description") or "N/A"
    return f"Title: {item.get('title')}\nDescription: {description}\nLink: {item.get('url')}"


def needs_processing(item: dict[str, Any], target_fields: list[str]) -> bool:
    metadata = item.get("metadata") or {}
    return any(not metadata.get(f) for f in target_fields)


def apply_annotation(item: dict[str, Any], result: str, target_fields: list[str]) -> None:
    """Merge the JSON object found in *result* into the item's metadata.

    Raises:
        AnnotationParseError: *result* holds no decodable JSON object.
    """
    match = _JSON_OBJECT.search(_CODE_FENCE.sub("", result or ""))
    if match is None:
        msg = "response contains no JSON object"
        raise AnnotationParseError(msg)
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AnnotationParseError(str(exc)) from exc
    if not isinstance(parsed, dict):
        msg = "response JSON is not an object"
        raise AnnotationParseError(msg)

    metadata = item.setdefault("metadata", {})
    if parsed.get("ai_summary"):
        metadata["ai_summary"] = parsed["ai_summary"]
    score = parsed.get("ai_score", parsed.get("score"))
    if isinstance(score, int | float) and not isinstance(score, bool):
        metadata["ai_score"] = score
    reason = parsed.get("ai_score_reason") or parsed.get("reason")
    if reason:
        metadata["ai_score_reason"] = reason
    if isinstance(parsed.get("tags"), list):
        metadata["tags"] = parsed["tags"]
    for target in target_fields:
        if target not in KNOWN_FIELDS and target in parsed:
            metadata[target] = parsed[target]


@dataclass
class _WorkItem:
    item: dict[str, Any]
    date: str
    adapter: SourceAdapter


class BatchProcessor:
    """Runs a per-item handler over the unannotated items of recent partitions.

    A fixed pool of workers pulls from one shared iterator, so every selected
    item is handled exactly once. Workers start staggered. Each partition
    that had at least one item handled is written back once, after all
    workers finish.

    Args:
        store: Partition storage.
        ingestion: Supplies the list of source adapters.
        workers: Pool size (default from settings).
        stagger_seconds: Start offset between consecutive workers.
        timezone: Zone used to compute "today" (default from settings).
    """

    def __init__(
        self,
        store: Store,
        ingestion: IngestionService | None,
        workers: int | None = None,
        stagger_seconds: float | None = None,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._ingestion = ingestion
        self._workers = workers or settings.batch_workers
        self._stagger = settings.batch_worker_stagger_seconds if stagger_seconds is None else stagger_seconds
        self._timezone = timezone or settings.scheduler_timezone

    def window(self, today: date_cls | None = None) -> list[str]:
        """ISO dates of the rolling window: yesterday, then today."""
        today = today or datetime.now(ZoneInfo(self._timezone)).date()
        return [(today - timedelta(days=1)).isoformat(), today.isoformat()]

    async def collect(self, target_fields: list[str], today: date_cls | None = None) -> list[_WorkItem]:
        adapters = self._ingestion.adapters() if self._ingestion is not None else []
        work: list[_WorkItem] = []
        for day in self.window(today):
            for adapter in adapters:
                items = await self._store.list_partition(day, adapter.name, adapter.category or None)
                work.extend(
                    _WorkItem(item=item, date=day, adapter=adapter)
                    for item in items
                    if needs_processing(item, target_fields)
                )
        return work

    async def process(
        self,
        task: ScheduleTask,
        log_id: int,
        handler: ItemHandler,
        today: date_cls | None = None,
    ) -> int:
        """Handle every pending item and return how many were handled."""
        target_fields = task.target_fields
        work = await self.collect(target_fields, today)
        if not work:
            await self._store.update_task_log(log_id, progress=100)
            return 0

        total = len(work)
        delay = float(task.config.get("delay") or 0) / 1000
        touched: dict[tuple[str, str], list[dict[str, Any]]] = defaultdict(list)
        shared: Iterator[tuple[int, _WorkItem]] = iter(enumerate(work, start=1))
        processed = 0

        async def worker(index: int) -> None:
            nonlocal processed
            if index > 0 and self._stagger:
                await asyncio.sleep(index * self._stagger)
            for position, entry in shared:
                item = entry.item
                logger.info(
                    "[%d/%d] Processing item [%s -> %s]: %s",
                    position,
                    total,
                    task.type.value,
                    ",".join(target_fields),
                    item.get("title"),
                )
                try:
                    result = await handler(item, entry.date)
                except Exception:
                    logger.exception("Failed to process item %s in %s", item.get("id"), task.name)
                    continue
                try:
                    apply_annotation(item, result, target_fields)
                except AnnotationParseError as exc:
                    logger.warning("Could not parse AI response for item %s: %s", item.get("id"), exc)
                touched[(entry.date, entry.adapter.name)].append(item)
                processed += 1
                await self._store.update_task_log(log_id, progress=round(processed / total * 100))
                if delay:
                    await asyncio.sleep(delay)

        await asyncio.gather(*(worker(i) for i in range(min(self._workers, total))))

        for (day, adapter_name), items in touched.items():
            await self._store.save_items(items, day, adapter_name)
            logger.info("Saved %d annotated item(s) to partition %s/%s", len(items), day, adapter_name)
        return processed
