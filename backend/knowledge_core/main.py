"""Process entry point: bootstrap the schema, schedule syncs and run the sync worker.

    python -m knowledge_core.main
"""

import asyncio
import logging
import signal

from knowledge_core.config import get_settings
from knowledge_core.infrastructure.container import KnowledgeContainer
from knowledge_core.infrastructure.logging.log_config import setup_logging

logger = logging.getLogger(__name__)


async def run() -> None:
    """Lifespan: create tables, register schedules, run the worker until signalled."""
    settings = get_settings()
    setup_logging(settings)
    logger.info("Starting %s %s (%s)", settings.app_title, settings.app_version, settings.app_env)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    async with KnowledgeContainer(settings) as container:
        # 1. Enable pgvector and create tables
        await container.init_schema()

        # 2. Register recurring syncs and first syncs
        report = await container.scheduler.schedule_all()
        logger.info(
            "Knowledge bases: %d registered, %d scheduled, %d queued for first sync",
            len(container.registry),
            len(report.scheduled),
            len(report.immediate),
        )

        # 3. Run the worker until asked to stop
        await container.worker.start()
        await stop_event.wait()
        logger.info("Shutdown requested")
        await container.worker.stop()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
