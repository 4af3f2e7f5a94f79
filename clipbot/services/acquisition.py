"""Media acquisition with yt-dlp.

Format selection is delegated to an ordered list of strategies. Each
strategy contributes yt-dlp arguments; the first one that produces a
file wins.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog

from clipbot.core.errors import AcquisitionFailure
from clipbot.services.command_parser import JobRequest
from clipbot.services.tools import ToolConfig, run_tool

logger = structlog.get_logger()

ANDROID_USER_AGENT = "com.google.android.youtube/19.02.39 (Linux; U; Android 13) gzip"


def format_selector(quality: str | None) -> str:
    if quality is None or quality == "best":
        return "bestvideo+bestaudio/best"
    if quality == "worst":
        return "worstvideo+worstaudio/worst"
    return f"bestvideo[height<={quality}]+bestaudio/best[height<={quality}]/best"


@dataclass
class MediaInfo:
    id: str
    title: str
    duration: float | None = None
    uploader: str | None = None
    ext: str | None = None

    @classmethod
    def from_ytdlp(cls, data: dict) -> "MediaInfo":
        duration = data.get("duration")
        return cls(
            id=str(data.get("id") or ""),
            title=data.get("title") or "video",
            duration=float(duration) if duration is not None else None,
            uploader=data.get("uploader"),
            ext=data.get("ext"),
        )


class AcquisitionStrategy(ABC):
    name: str = "base"

    @abstractmethod
    def build_args(self, request: JobRequest) -> list[str]:
        """yt-dlp arguments selecting formats for this request."""


class DefaultFormatStrategy(AcquisitionStrategy):
    name = "default"

    def build_args(self, request: JobRequest) -> list[str]:
        return ["-f", format_selector(request.quality), "--merge-output-format", "mp4"]


class AndroidClientStrategy(DefaultFormatStrategy):
    """Same selection through the Android player client."""

    name = "android"

    def build_args(self, request: JobRequest) -> list[str]:
        return super().build_args(request) + [
            "--extractor-args", "youtube:player_client=android,player_skip=webpage",
            "--user-agent", ANDROID_USER_AGENT,
        ]


class ProgressiveFormatStrategy(AcquisitionStrategy):
    """Single-file formats only, no merge step."""

    name = "progressive"

    def build_args(self, request: JobRequest) -> list[str]:
        quality = request.quality
        if quality is None or quality == "best":
            selector = "best[ext=mp4]/best"
        elif quality == "worst":
            selector = "worst[ext=mp4]/worst"
        else:
            selector = f"best[height<={quality}][ext=mp4]/best[height<={quality}]/best"
        return ["-f", selector]


STRATEGIES: dict[str, type[AcquisitionStrategy]] = {
    DefaultFormatStrategy.name: DefaultFormatStrategy,
    AndroidClientStrategy.name: AndroidClientStrategy,
    ProgressiveFormatStrategy.name: ProgressiveFormatStrategy,
}


def build_strategies(names: list[str]) -> list[AcquisitionStrategy]:
    try:
        return [STRATEGIES[name]() for name in names]
    except KeyError as e:
        raise ValueError(f"Unknown acquisition strategy: {e.args[0]}") from e


class MediaAcquisition:
    def __init__(
        self,
        tools: ToolConfig,
        strategies: list[AcquisitionStrategy] | None = None,
    ) -> None:
        self.tools = tools
        self.strategies = strategies or [DefaultFormatStrategy()]

    def probe(self, url: str) -> MediaInfo:
        """Fetch metadata without downloading."""
        cmd = [
            self.tools.ytdlp_path,
            "--dump-json",
            "--skip-download",
            "--no-warnings",
            "--no-playlist",
            url,
        ]
        logger.info("probe_started", url=url)
        result = run_tool(cmd, self.tools.timeout, AcquisitionFailure)

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise AcquisitionFailure("Could not parse media metadata") from e

        info = MediaInfo.from_ytdlp(data)
        logger.info("probe_completed", url=url, title=info.title, duration=info.duration)
        return info

    def download(self, request: JobRequest, output_path: Path) -> Path:
        """Fetch the media to ``output_path``, trying each strategy in order."""
        last_error: AcquisitionFailure | None = None

        for strategy in self.strategies:
            cmd = [self.tools.ytdlp_path, *strategy.build_args(request)]
            cmd += ["--no-playlist", "--no-warnings", "--force-overwrites"]
            if self.tools.ffmpeg_location:
                cmd += ["--ffmpeg-location", self.tools.ffmpeg_location]
            cmd += ["-o", str(output_path), request.url]

            logger.info("download_started", strategy=strategy.name, url=request.url)
            try:
                run_tool(cmd, self.tools.timeout, AcquisitionFailure)
            except AcquisitionFailure as e:
                logger.warning("download_strategy_failed", strategy=strategy.name, error=e.message)
                last_error = e
                continue

            if not output_path.exists():
                last_error = AcquisitionFailure(f"{strategy.name}: no output file produced")
                logger.warning("download_strategy_failed", strategy=strategy.name, error=last_error.message)
                continue

            logger.info("download_completed", strategy=strategy.name, size=output_path.stat().st_size)
            return output_path

        raise last_error or AcquisitionFailure("No acquisition strategy configured")
