import structlog
from fastapi import APIRouter, Depends

from clipbot.api.dependencies import DatabaseSession, Notifier, Parser, Queue, verify_webhook_secret
from clipbot.api.schemas import TelegramUpdate
from clipbot.services.intake import handle_update

logger = structlog.get_logger()
router = APIRouter(prefix="/telegram", tags=["Telegram"])


@router.post(
    "/webhook",
    dependencies=[Depends(verify_webhook_secret)],
    summary="Telegram webhook",
    description="""
Receives Bot API updates. Only text messages are handled:

- `/start` replies with usage help
- `/start <url-encoded command>` behaves like `/dl <command>`
- `/dl <url> [START=] [END=] [Q=] [MP3=]` creates and queues a download job

Every other update is acknowledged and ignored.
    """,
)
def telegram_webhook(
    update: TelegramUpdate,
    db: DatabaseSession,
    queue: Queue,
    notifier: Notifier,
    parser: Parser,
) -> dict:
    logger.debug("webhook_received", update_id=update.update_id)

    if update.message is None or not update.message.text:
        return {"ok": True}

    job_id = handle_update(db, queue, notifier, parser, update.model_dump(by_alias=True))
    return {"ok": True, "job_id": job_id} if job_id else {"ok": True}
