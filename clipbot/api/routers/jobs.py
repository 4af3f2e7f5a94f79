import structlog
from fastapi import APIRouter

from clipbot.api.dependencies import ExistingJob, Queue
from clipbot.api.schemas import JobResponse, JobStatusResponse
from clipbot.models import JobStatus

logger = structlog.get_logger()
router = APIRouter(prefix="/jobs", tags=["Jobs"])


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    response_model_by_alias=True,
    summary="Job record",
)
def get_job(job: ExistingJob):
    return JobResponse.from_job(job)


@router.get(
    "/{job_id}/status",
    response_model=JobStatusResponse,
    response_model_by_alias=True,
    summary="Job status",
    description="""
Current status of a download job, plus the queue-side view of its entry.

**Statuses:**
- `pending` - Waiting in queue (or waiting for a retry)
- `processing` - A worker is running the pipeline
- `completed` - File delivered to the chat
- `failed` - Gave up; see `errorCode`
    """,
)
def get_job_status(job: ExistingJob, queue: Queue):
    messages = {
        JobStatus.PENDING: "Waiting in queue",
        JobStatus.PROCESSING: "Downloading",
        JobStatus.COMPLETED: "Delivered",
        JobStatus.FAILED: job.error_message or "Download failed",
    }

    queue_state = None
    try:
        entry = queue.get(str(job.id))
        queue_state = entry.state if entry else None
    except Exception as e:
        logger.warning("queue_lookup_failed", job_id=str(job.id), error=str(e))

    return JobStatusResponse(
        id=job.id,
        status=job.status,
        attempts=job.attempts,
        queue_state=queue_state,
        error_code=job.error_code,
        message=messages.get(job.status),
    )
