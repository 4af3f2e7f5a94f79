from pathlib import Path

import structlog

from clipbot.core.errors import ProcessingFailure
from clipbot.services.command_parser import JobRequest, time_to_seconds
from clipbot.services.tools import ToolConfig, run_tool

logger = structlog.get_logger()


def output_extension(request: JobRequest) -> str:
    return "mp3" if request.mp3 else "mp4"


class Transcoder:
    """Trims and converts downloaded media with FFmpeg."""

    def __init__(self, tools: ToolConfig) -> None:
        self.tools = tools

    def _trim_args(self, request: JobRequest) -> list[str]:
        args: list[str] = []
        start = time_to_seconds(request.start_time) if request.start_time else 0
        if request.start_time:
            args += ["-ss", str(start)]
        if request.end_time:
            args += ["-t", str(time_to_seconds(request.end_time) - start)]
        return args

    def build_command(self, source: Path, output: Path, request: JobRequest, reencode: bool = False) -> list[str]:
        """
        Command: ffmpeg -y -i {source} [-ss S] [-t D] {codec args} {output}
        """
        cmd = [self.tools.ffmpeg_path, "-y", "-i", str(source), *self._trim_args(request)]
        if request.mp3:
            cmd += ["-vn", "-acodec", "libmp3lame", "-b:a", "192k"]
        elif reencode:
            cmd += ["-c:v", "libx264", "-c:a", "aac"]
        else:
            cmd += ["-c", "copy"]
        cmd.append(str(output))
        return cmd

    def process(self, source: Path, output: Path, request: JobRequest) -> Path:
        """Write the trimmed/converted file, falling back to a re-encode once."""
        logger.info(
            "ffmpeg_started",
            source=str(source),
            start=request.start_time,
            end=request.end_time,
            mp3=request.mp3,
        )

        try:
            run_tool(self.build_command(source, output, request), self.tools.timeout, ProcessingFailure)
        except ProcessingFailure as e:
            if request.mp3:
                raise
            logger.warning("ffmpeg_copy_failed", error=e.message)
            run_tool(
                self.build_command(source, output, request, reencode=True),
                self.tools.timeout,
                ProcessingFailure,
            )

        if not output.exists():
            raise ProcessingFailure("FFmpeg produced no output file")

        logger.info("ffmpeg_completed", output=str(output), size=output.stat().st_size)
        return output
