"""Interface to the content ingestion layer that scheduled tasks drive."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@dataclass(frozen=True)
class SourceAdapter:
    """A content source whose items land in per-day partitions."""

    name: str
    category: str = ""


class IngestionService(Protocol):
    """What the scheduler needs from the ingestion layer.

    Scraping and adapter logic live behind this interface; the scheduler only
    triggers runs, reads adapter status and enumerates partitions.
    """

    def adapters(self) -> list[SourceAdapter]: ...

    async def run_daily_ingestion(
        self,
        date: str | None,
        config: dict[str, Any],
        on_progress: Callable[[int], Awaitable[None]],
    ) -> None: ...

    async def run_adapter_ingestion(
        self,
        adapter_id: str,
        date: str | None,
        config: dict[str, Any],
        on_progress: Callable[[int], Awaitable[None]],
    ) -> None: ...

    def adapter_status(self) -> dict[str, dict[str, Any]]: ...
