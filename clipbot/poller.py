"""
clipbot poller - long-polls getUpdates instead of receiving webhooks.

Useful for local development where Telegram cannot reach the API.
"""

import signal
import time

import structlog

from clipbot.core.config import settings
from clipbot.core.logging import configure_logging
from clipbot.core.queue import JobQueue, get_queue
from clipbot.models import SessionLocal, init_db
from clipbot.services import CommandParser, TelegramClient, TelegramError, get_telegram_client
from clipbot.services.intake import handle_update

logger = structlog.get_logger()

shutdown_requested = False


def signal_handler(signum, frame):
    global shutdown_requested
    logger.info("shutdown_requested", signal=signum)
    shutdown_requested = True


def poll_once(
    client: TelegramClient,
    queue: JobQueue,
    parser: CommandParser,
    offset: int | None,
    timeout: int = 30,
) -> int | None:
    """Fetch one batch of updates and handle them. Returns the next offset."""
    updates = client.get_updates(offset=offset, timeout=timeout)

    for update in updates:
        offset = update["update_id"] + 1
        db = SessionLocal()
        try:
            handle_update(db, queue, client, parser, update)
        except Exception as e:
            logger.error("update_failed", update_id=update["update_id"], error=str(e))
        finally:
            db.close()

    return offset


def main():
    configure_logging()
    init_db()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    client = get_telegram_client()
    queue = get_queue()
    parser = CommandParser(settings.allowed_domains)
    offset = None

    logger.info("poller_started")

    while not shutdown_requested:
        try:
            offset = poll_once(client, queue, parser, offset)
        except TelegramError as e:
            logger.error("telegram_poll_error", error=str(e))
            if not shutdown_requested:
                time.sleep(5)

    client.close()
    logger.info("poller_stopped")


if __name__ == "__main__":
    main()
