import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import structlog
from sqlalchemy.orm import Session

from clipbot.core.errors import DeliveryFailure, InvalidInput, PipelineError, SizeLimitExceeded, classify
from clipbot.core.queue import QueuedJob
from clipbot.models import Job
from clipbot.services import messages, store
from clipbot.services.acquisition import MediaAcquisition
from clipbot.services.command_parser import JobRequest, time_to_seconds
from clipbot.services.transcoder import Transcoder, output_extension

logger = structlog.get_logger()


class Notifier(Protocol):
    def send_message(self, chat_id: int, text: str, reply_to_message_id: int | None = None) -> dict: ...
    def edit_message_text(self, chat_id: int, message_id: int, text: str) -> dict: ...
    def send_video(self, chat_id: int, path: Path, caption: str | None = None,
                   filename: str | None = None, reply_to_message_id: int | None = None) -> dict: ...
    def send_audio(self, chat_id: int, path: Path, caption: str | None = None,
                   filename: str | None = None, reply_to_message_id: int | None = None) -> dict: ...


@dataclass
class PipelineResult:
    """Outcome of one execution, as seen by the worker pool."""

    status: str  # completed | skipped | retry | failed
    job_id: str
    error: PipelineError | None = None
    file_size: int | None = None

    @property
    def should_retry(self) -> bool:
        return self.status == "retry"


def request_from_job(job: Job) -> JobRequest:
    return JobRequest(
        url=job.url,
        start_time=job.start_time,
        end_time=job.end_time,
        quality=job.quality,
        mp3=job.convert_to_mp3,
    )


def validate_trim(request: JobRequest, duration: float | None) -> None:
    """Check the trim window against itself and the probed duration.

    ``duration`` is the fractional length reported by the probe.
    """
    start = time_to_seconds(request.start_time) if request.start_time else None
    end = time_to_seconds(request.end_time) if request.end_time else None

    if end is not None and end <= (start or 0):
        raise InvalidInput("END must be after START")
    if duration is None:
        return
    if start is not None and start >= duration:
        raise InvalidInput(f"START is beyond the end of the video ({duration:g}s)")
    if end is not None and end > duration:
        raise InvalidInput(f"END is beyond the end of the video ({duration:g}s)")


def delivery_name(title: str, job_id: str, ext: str) -> str:
    safe = re.sub(r"[^\w\s-]", "", title).strip()
    safe = re.sub(r"\s+", "_", safe)[:50] or "video"
    return f"{safe}_{job_id}.{ext}"


class DownloadPipeline:
    """Runs one job: probe, fetch, post-process, size check, deliver, persist."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        acquisition: MediaAcquisition,
        transcoder: Transcoder,
        notifier: Notifier,
        max_file_size: int,
        temp_dir: str | Path,
    ) -> None:
        self.session_factory = session_factory
        self.acquisition = acquisition
        self.transcoder = transcoder
        self.notifier = notifier
        self.max_file_size = max_file_size
        self.temp_dir = Path(temp_dir)

    def temp_path(self, job_id: str, suffix: str) -> Path:
        return self.temp_dir / f"{job_id}_{suffix}"

    def run(self, queued: QueuedJob) -> PipelineResult:
        job_id = queued.job_id
        logger.info("processing_started", job_id=job_id, attempt=queued.attempt)

        db = self.session_factory()
        try:
            job = store.mark_processing(db, job_id)
            if job is None:
                logger.info("processing_skipped", job_id=job_id, reason="terminal_or_missing")
                return PipelineResult("skipped", job_id)

            return self._execute(db, job, queued)
        finally:
            db.close()

    def _execute(self, db: Session, job: Job, queued: QueuedJob) -> PipelineResult:
        job_id = str(job.id)
        request = request_from_job(job)
        self._progress(job, queued.attempt)

        try:
            if job.delivered_at is not None:
                # An earlier execution handed the file over but never recorded it.
                logger.warning("delivery_already_claimed", job_id=job_id)
                store.mark_completed(db, job_id, job.file_path, job.file_name, job.file_size)
                return PipelineResult("completed", job_id)

            self.temp_dir.mkdir(parents=True, exist_ok=True)

            info = self.acquisition.probe(request.url)
            validate_trim(request, info.duration)

            final = self.acquisition.download(request, self.temp_path(job_id, "source.mp4"))
            if request.needs_postprocess:
                output = self.temp_path(job_id, f"output.{output_extension(request)}")
                final = self.transcoder.process(final, output, request)

            file_size = final.stat().st_size
            if file_size > self.max_file_size:
                raise SizeLimitExceeded(
                    f"File is {file_size / (1024 * 1024):.1f}MB, "
                    f"the limit is {self.max_file_size / (1024 * 1024):.0f}MB"
                )

            if not store.claim_delivery(db, job_id):
                logger.warning("delivery_claimed_elsewhere", job_id=job_id)
                return PipelineResult("skipped", job_id)

            file_name = delivery_name(info.title, job_id, output_extension(request))
            caption = messages.completed_caption(info.title, file_size, info.duration, request)
            self._deliver(job, final, file_name, caption, request)

            store.mark_completed(db, job_id, str(final), file_name, file_size)
            logger.info("processing_completed", job_id=job_id, file_size=file_size)
            return PipelineResult("completed", job_id, file_size=file_size)

        except Exception as exc:
            db.rollback()
            error = classify(exc)
            logger.error(
                "processing_failed",
                job_id=job_id,
                attempt=queued.attempt,
                code=error.code,
                error=error.message,
                retryable=error.retryable,
            )

            if error.retryable and queued.has_attempts_left:
                store.mark_pending(db, job_id)
                return PipelineResult("retry", job_id, error=error)

            store.mark_failed(db, job_id, error.code, error.message)
            self._notify_failure(job, error)
            return PipelineResult("failed", job_id, error=error)

        finally:
            self.cleanup(job_id)

    def _deliver(self, job: Job, path: Path, file_name: str, caption: str, request: JobRequest) -> None:
        send = self.notifier.send_audio if request.mp3 else self.notifier.send_video
        try:
            send(job.chat_id, path, caption=caption, filename=file_name, reply_to_message_id=job.message_id)
        except Exception as e:
            raise DeliveryFailure(f"Could not send the file: {e}") from e
        logger.info("file_delivered", job_id=str(job.id), file_name=file_name)

    def _progress(self, job: Job, attempt: int) -> None:
        if not job.status_message_id:
            return
        try:
            self.notifier.edit_message_text(
                job.chat_id, job.status_message_id, messages.processing_text(str(job.id), attempt)
            )
        except Exception as e:
            logger.warning("progress_update_failed", job_id=str(job.id), error=str(e))

    def _notify_failure(self, job: Job, error: PipelineError) -> None:
        try:
            self.notifier.send_message(
                job.chat_id,
                messages.failed_text(str(job.id), error.message),
                reply_to_message_id=job.message_id,
            )
        except Exception as e:
            logger.error("failure_notification_failed", job_id=str(job.id), error=str(e))

    def cleanup(self, job_id: str) -> int:
        """Remove every temp file belonging to the job."""
        removed = 0
        for path in self.temp_dir.glob(f"{job_id}_*"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("cleanup_failed", job_id=job_id, path=str(path), error=str(e))
        logger.debug("cleanup_completed", job_id=job_id, removed=removed)
        return removed
