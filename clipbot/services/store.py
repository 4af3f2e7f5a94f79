"""Row-scoped persistence operations for users and jobs.

Status changes are conditional ``UPDATE ... WHERE id = :id AND status IN
(...)`` statements, so a terminal row can never move again no matter how
many times a job is redelivered.
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clipbot.models import TERMINAL_STATUSES, Job, JobStatus, User
from clipbot.services.command_parser import JobRequest

logger = structlog.get_logger()


def _as_uuid(job_id: uuid.UUID | str) -> uuid.UUID:
    return job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def upsert_user(
    db: Session,
    telegram_id: int,
    first_name: str,
    username: str | None = None,
    language_code: str | None = None,
) -> User:
    """Create the user on first contact, refresh name fields afterwards."""
    user = db.execute(select(User).where(User.telegram_id == telegram_id)).scalar_one_or_none()

    if user is None:
        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            username=username,
            language_code=language_code,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Concurrent first contact from the same account
            db.rollback()
            user = db.execute(select(User).where(User.telegram_id == telegram_id)).scalar_one()
        else:
            db.refresh(user)
            logger.info("user_created", telegram_id=telegram_id, user_id=user.id)
            return user

    user.first_name = first_name
    user.username = username
    if language_code:
        user.language_code = language_code
    db.commit()
    db.refresh(user)
    return user


def create_job(
    db: Session,
    user: User,
    chat_id: int,
    request: JobRequest,
    message_id: int | None = None,
    job_id: uuid.UUID | None = None,
) -> Job:
    job = Job(
        id=job_id or uuid.uuid4(),
        user_id=user.id,
        chat_id=chat_id,
        message_id=message_id,
        url=request.url,
        status=JobStatus.PENDING,
        start_time=request.start_time,
        end_time=request.end_time,
        quality=request.quality,
        convert_to_mp3=request.mp3,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info("job_created", job_id=str(job.id), user_id=user.id, url=job.url)
    return job


def get_job(db: Session, job_id: uuid.UUID | str) -> Job | None:
    return db.get(Job, _as_uuid(job_id))


def set_status_message(db: Session, job_id: uuid.UUID | str, message_id: int) -> None:
    db.execute(
        update(Job).where(Job.id == _as_uuid(job_id)).values(status_message_id=message_id)
    )
    db.commit()


def mark_processing(db: Session, job_id: uuid.UUID | str) -> Job | None:
    """Start an execution. Returns None when the job is terminal or unknown."""
    jid = _as_uuid(job_id)
    result = db.execute(
        update(Job)
        .where(Job.id == jid, Job.status.notin_(TERMINAL_STATUSES))
        .values(
            status=JobStatus.PROCESSING,
            started_at=_now(),
            attempts=Job.attempts + 1,
        )
    )
    db.commit()
    if result.rowcount != 1:
        return None
    return db.get(Job, jid, populate_existing=True)


def mark_pending(db: Session, job_id: uuid.UUID | str) -> bool:
    """Hand a failed attempt back to the queue for another run."""
    result = db.execute(
        update(Job)
        .where(Job.id == _as_uuid(job_id), Job.status == JobStatus.PROCESSING)
        .values(status=JobStatus.PENDING)
    )
    db.commit()
    return result.rowcount == 1


def claim_delivery(db: Session, job_id: uuid.UUID | str) -> bool:
    """Record the intent to deliver. Only one execution can ever win."""
    result = db.execute(
        update(Job)
        .where(
            Job.id == _as_uuid(job_id),
            Job.status == JobStatus.PROCESSING,
            Job.delivered_at.is_(None),
        )
        .values(delivered_at=_now())
    )
    db.commit()
    return result.rowcount == 1


def mark_completed(
    db: Session,
    job_id: uuid.UUID | str,
    file_path: str | None,
    file_name: str | None,
    file_size: int | None,
) -> bool:
    """Finish the job and bump the owner's download counter atomically."""
    jid = _as_uuid(job_id)
    result = db.execute(
        update(Job)
        .where(Job.id == jid, Job.status == JobStatus.PROCESSING)
        .values(
            status=JobStatus.COMPLETED,
            file_path=file_path,
            file_name=file_name,
            file_size=file_size,
            error_code=None,
            error_message=None,
            completed_at=_now(),
        )
    )
    if result.rowcount != 1:
        db.rollback()
        return False

    owner = select(Job.user_id).where(Job.id == jid).scalar_subquery()
    db.execute(
        update(User)
        .where(User.id == owner)
        .values(total_downloads=User.total_downloads + 1)
    )
    db.commit()
    return True


def mark_failed(db: Session, job_id: uuid.UUID | str, error_code: str, error_message: str) -> bool:
    result = db.execute(
        update(Job)
        .where(
            Job.id == _as_uuid(job_id),
            Job.status.notin_(TERMINAL_STATUSES),
        )
        .values(
            status=JobStatus.FAILED,
            error_code=error_code,
            error_message=error_message[:500],
            completed_at=_now(),
        )
    )
    db.commit()
    return result.rowcount == 1
