from .job import JobResponse, JobStatusResponse
from .telegram import TelegramChat, TelegramMessage, TelegramUpdate, TelegramUser

__all__ = [
    "JobResponse", "JobStatusResponse",
    "TelegramChat", "TelegramMessage", "TelegramUpdate", "TelegramUser",
]
