from .base import Base, get_db, engine, init_db, SessionLocal
from .user import User
from .job import Job, JobStatus, TERMINAL_STATUSES

__all__ = [
    "Base",
    "get_db",
    "engine",
    "init_db",
    "SessionLocal",
    "User",
    "Job",
    "JobStatus",
    "TERMINAL_STATUSES",
]
