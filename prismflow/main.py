"""PrismFlow entry point — runs the scheduler until interrupted."""

import asyncio
import logging

from prismflow.config import settings
from prismflow.context import ServiceContext

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def run() -> None:
    context = await ServiceContext.create()
    await context.scheduler.start()
    logger.info(
        "PrismFlow running with schedules: %s",
        ", ".join(context.scheduler.active_schedule_ids()) or "(none)",
    )
    try:
        await asyncio.Event().wait()
    finally:
        await context.aclose()


def main() -> None:
    """Start the orchestration core."""
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
