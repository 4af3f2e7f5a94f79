from .acquisition import MediaAcquisition, MediaInfo, build_strategies
from .command_parser import CommandParser, JobRequest
from .telegram import TelegramClient, TelegramError, get_telegram_client
from .tools import ToolConfig
from .transcoder import Transcoder

__all__ = [
    "CommandParser",
    "JobRequest",
    "MediaAcquisition",
    "MediaInfo",
    "build_strategies",
    "TelegramClient",
    "TelegramError",
    "get_telegram_client",
    "ToolConfig",
    "Transcoder",
]
