"""
clipbot worker - consumes download jobs from the Redis queue.
"""

import signal

import structlog

from clipbot.core.config import settings
from clipbot.core.logging import configure_logging
from clipbot.core.queue import get_queue
from clipbot.models import SessionLocal, init_db
from clipbot.services import MediaAcquisition, ToolConfig, Transcoder, build_strategies, get_telegram_client
from clipbot.tasks import DownloadPipeline, WorkerPool

logger = structlog.get_logger()


def build_pipeline() -> DownloadPipeline:
    tools = ToolConfig.from_settings(settings)
    return DownloadPipeline(
        session_factory=SessionLocal,
        acquisition=MediaAcquisition(tools, build_strategies(settings.acquisition_strategies)),
        transcoder=Transcoder(tools),
        notifier=get_telegram_client(),
        max_file_size=settings.max_file_size_bytes,
        temp_dir=settings.temp_dir,
    )


def build_pool() -> WorkerPool:
    return WorkerPool(
        get_queue(),
        build_pipeline(),
        concurrency=settings.worker_concurrency,
        poll_interval=settings.poll_interval,
    )


def main():
    configure_logging()
    init_db()

    pool = build_pool()
    removed = pool.queue.clean()
    logger.info("queue_cleaned", removed=removed)

    def signal_handler(signum, frame):
        logger.info("shutdown_requested", signal=signum)
        pool.stop()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("worker_starting", concurrency=settings.worker_concurrency, queue=settings.queue_name)
    pool.start()
    pool.join()
    get_telegram_client().close()
    logger.info("worker_stopped")


if __name__ == "__main__":
    main()
