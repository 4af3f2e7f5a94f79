import secrets
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from clipbot.core.config import settings
from clipbot.core.queue import JobQueue, get_queue
from clipbot.models import Job, get_db
from clipbot.services import CommandParser, TelegramClient, get_telegram_client


def get_job_queue() -> JobQueue:
    return get_queue()


def get_notifier() -> TelegramClient:
    return get_telegram_client()


def get_command_parser() -> CommandParser:
    return CommandParser(settings.allowed_domains)


DatabaseSession = Annotated[Session, Depends(get_db)]
Queue = Annotated[JobQueue, Depends(get_job_queue)]
Notifier = Annotated[TelegramClient, Depends(get_notifier)]
Parser = Annotated[CommandParser, Depends(get_command_parser)]


def verify_webhook_secret(
    x_telegram_bot_api_secret_token: Annotated[str | None, Header()] = None,
) -> None:
    expected = settings.telegram_webhook_secret
    if not expected:
        return
    if not secrets.compare_digest(x_telegram_bot_api_secret_token or "", expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_job_or_404(job_id: UUID, db: DatabaseSession) -> Job:
    job = db.get(Job, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


ExistingJob = Annotated[Job, Depends(get_job_or_404)]
