"""Handles one incoming chat message: reply, or register and enqueue a job."""

from typing import Protocol

import structlog
from sqlalchemy.orm import Session

from clipbot.core.errors import InvalidInput
from clipbot.core.queue import JobQueue
from clipbot.services import messages, store
from clipbot.services.command_parser import CommandParser, resolve_command

logger = structlog.get_logger()


class Notifier(Protocol):
    def send_message(self, chat_id: int, text: str, reply_to_message_id: int | None = None) -> dict: ...


def _reply(notifier: Notifier, chat_id: int, text: str, reply_to: int | None) -> dict | None:
    try:
        return notifier.send_message(chat_id, text, reply_to_message_id=reply_to)
    except Exception as e:
        logger.error("reply_failed", chat_id=chat_id, error=str(e))
        return None


def handle_message(
    db: Session,
    queue: JobQueue,
    notifier: Notifier,
    parser: CommandParser,
    message: dict,
) -> str | None:
    """Process a Telegram ``message`` object. Returns the new job id, if any."""
    text = message.get("text")
    sender = message.get("from")
    if not text or not sender:
        return None

    chat_id = message["chat"]["id"]
    message_id = message.get("message_id")
    command = resolve_command(text)

    if command.name == "help":
        _reply(notifier, chat_id, messages.HELP_TEXT, message_id)
        return None
    if command.name == "unknown":
        _reply(notifier, chat_id, messages.UNKNOWN_COMMAND_TEXT, message_id)
        return None

    try:
        request = parser.parse(command.args)
    except InvalidInput as e:
        logger.info("command_rejected", chat_id=chat_id, reason=e.message)
        _reply(notifier, chat_id, messages.invalid_command_text(e.message), message_id)
        return None

    user = store.upsert_user(
        db,
        telegram_id=sender["id"],
        first_name=sender.get("first_name") or "",
        username=sender.get("username"),
        language_code=sender.get("language_code"),
    )
    job = store.create_job(db, user, chat_id=chat_id, request=request, message_id=message_id)
    job_id = str(job.id)

    payload = {
        "job_id": job_id,
        "chat_id": chat_id,
        "message_id": message_id,
        **request.model_dump(),
    }
    try:
        queue.enqueue(job_id, payload)
    except Exception as e:
        logger.error("enqueue_failed", job_id=job_id, error=str(e))
        store.mark_failed(db, job_id, "INTERNAL_ERROR", "Could not queue the job")
        _reply(notifier, chat_id, messages.failed_text(job_id, "Could not queue the job"), message_id)
        return None

    sent = _reply(notifier, chat_id, messages.queued_text(job_id, request), message_id)
    if sent and sent.get("message_id"):
        store.set_status_message(db, job_id, sent["message_id"])

    logger.info("job_accepted", job_id=job_id, user_id=user.id, url=request.url)
    return job_id


def handle_update(
    db: Session,
    queue: JobQueue,
    notifier: Notifier,
    parser: CommandParser,
    update: dict,
) -> str | None:
    message = update.get("message")
    if not message:
        return None
    return handle_message(db, queue, notifier, parser, message)
