from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from clipbot.models.job import JobStatus


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: UUID
    user_id: int
    chat_id: int
    url: str
    status: JobStatus
    start_time: str | None = None
    end_time: str | None = None
    quality: str | None = None
    convert_to_mp3: bool = False
    file_name: str | None = None
    file_size: int | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job) -> "JobResponse":
        return cls(
            id=job.id,
            user_id=job.user_id,
            chat_id=job.chat_id,
            url=job.url,
            status=job.status,
            start_time=job.start_time,
            end_time=job.end_time,
            quality=job.quality,
            convert_to_mp3=job.convert_to_mp3,
            file_name=job.file_name,
            file_size=job.file_size,
            error=job.error_message,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: UUID
    status: JobStatus
    attempts: int
    queue_state: str | None = None
    error_code: str | None = None
    message: str | None = None
