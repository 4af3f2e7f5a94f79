import subprocess
from dataclasses import dataclass

import structlog

from clipbot.core.config import Settings
from clipbot.core.errors import PipelineError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ToolConfig:
    """Locations and limits for the external binaries."""

    ytdlp_path: str = "yt-dlp"
    ffmpeg_path: str = "ffmpeg"
    ffmpeg_location: str | None = None
    timeout: int = 1800

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolConfig":
        return cls(
            ytdlp_path=settings.ytdlp_path,
            ffmpeg_path=settings.ffmpeg_path,
            ffmpeg_location=settings.ffmpeg_location,
            timeout=settings.tool_timeout,
        )


def run_tool(
    cmd: list[str], timeout: int, error_cls: type[PipelineError]
) -> subprocess.CompletedProcess:
    """Run an external command, raising ``error_cls`` on any failure."""
    tool = cmd[0]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise error_cls(f"{tool} timed out after {timeout}s") from e
    except OSError as e:
        raise error_cls(f"{tool} could not be started: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        logger.error("tool_failed", tool=tool, returncode=result.returncode, stderr=stderr[:500])
        raise error_cls(f"{tool} failed: {stderr[:500] or f'exit code {result.returncode}'}")
    return result
