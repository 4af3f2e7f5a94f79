"""
Unit tests for clipbot/services/acquisition.py

Tests yt-dlp invocation, metadata parsing and the strategy fallback chain.
"""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from clipbot.core.errors import AcquisitionFailure
from clipbot.services.acquisition import (
    AndroidClientStrategy,
    DefaultFormatStrategy,
    MediaAcquisition,
    ProgressiveFormatStrategy,
    build_strategies,
    format_selector,
)
from clipbot.services.command_parser import JobRequest
from clipbot.services.tools import ToolConfig

URL = "https://www.youtube.com/watch?v=abc"


@pytest.fixture
def tools() -> ToolConfig:
    return ToolConfig(ytdlp_path="yt-dlp", ffmpeg_path="ffmpeg", timeout=60)


@pytest.fixture
def acquisition(tools) -> MediaAcquisition:
    return MediaAcquisition(tools, build_strategies(["default", "android", "progressive"]))


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr=stderr)


class TestFormatSelection:
    """Tests for format selectors and strategies."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "quality,expected",
        [
            (None, "bestvideo+bestaudio/best"),
            ("best", "bestvideo+bestaudio/best"),
            ("worst", "worstvideo+worstaudio/worst"),
            ("720", "bestvideo[height<=720]+bestaudio/best[height<=720]/best"),
        ],
    )
    def test_format_selector(self, quality, expected):
        assert format_selector(quality) == expected

    @pytest.mark.unit
    def test_default_strategy_merges_to_mp4(self):
        args = DefaultFormatStrategy().build_args(JobRequest(url=URL, quality="480"))

        assert args[:2] == ["-f", "bestvideo[height<=480]+bestaudio/best[height<=480]/best"]
        assert "--merge-output-format" in args
        assert "mp4" in args

    @pytest.mark.unit
    def test_android_strategy_adds_player_client(self):
        args = AndroidClientStrategy().build_args(JobRequest(url=URL))

        assert "youtube:player_client=android,player_skip=webpage" in args
        assert "--user-agent" in args

    @pytest.mark.unit
    def test_progressive_strategy_avoids_merge(self):
        args = ProgressiveFormatStrategy().build_args(JobRequest(url=URL, quality="360"))

        assert args == ["-f", "best[height<=360][ext=mp4]/best[height<=360]/best"]

    @pytest.mark.unit
    def test_build_strategies_preserves_order(self):
        names = [s.name for s in build_strategies(["android", "default"])]
        assert names == ["android", "default"]

    @pytest.mark.unit
    def test_build_strategies_rejects_unknown(self):
        with pytest.raises(ValueError, match="turbo"):
            build_strategies(["default", "turbo"])


class TestProbe:
    """Tests for MediaAcquisition.probe."""

    @pytest.mark.unit
    def test_probe_calls_ytdlp_with_correct_command(self, acquisition):
        info = {"id": "abc", "title": "A video", "duration": 125.4, "uploader": "me", "ext": "webm"}

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed(stdout=json.dumps(info))
            result = acquisition.probe(URL)

            cmd = mock_run.call_args[0][0]
            assert cmd[0] == "yt-dlp"
            assert "--dump-json" in cmd
            assert "--skip-download" in cmd
            assert "--no-playlist" in cmd
            assert cmd[-1] == URL
            assert mock_run.call_args.kwargs["timeout"] == 60

        assert result.title == "A video"
        assert result.duration == 125.4
        assert result.uploader == "me"

    @pytest.mark.unit
    def test_probe_failure_raises(self, acquisition):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed(returncode=1, stderr="ERROR: Video unavailable")

            with pytest.raises(AcquisitionFailure, match="Video unavailable"):
                acquisition.probe(URL)

    @pytest.mark.unit
    def test_probe_timeout_raises(self, acquisition):
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="yt-dlp", timeout=60)

            with pytest.raises(AcquisitionFailure, match="timed out"):
                acquisition.probe(URL)

    @pytest.mark.unit
    def test_probe_missing_binary_raises(self, acquisition):
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = FileNotFoundError("yt-dlp")

            with pytest.raises(AcquisitionFailure, match="could not be started"):
                acquisition.probe(URL)

    @pytest.mark.unit
    def test_probe_invalid_json_raises(self, acquisition):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed(stdout="not json")

            with pytest.raises(AcquisitionFailure, match="metadata"):
                acquisition.probe(URL)


class TestDownload:
    """Tests for MediaAcquisition.download."""

    @pytest.mark.unit
    def test_download_first_strategy(self, acquisition, temp_dir):
        output = temp_dir / "job_source.mp4"

        def fake_run(cmd, **kwargs):
            Path(cmd[cmd.index("-o") + 1]).write_bytes(b"data")
            return completed()

        with patch("subprocess.run", side_effect=fake_run) as mock_run:
            result = acquisition.download(JobRequest(url=URL), output)

            assert mock_run.call_count == 1
            cmd = mock_run.call_args[0][0]
            assert "--force-overwrites" in cmd
            assert cmd[-1] == URL

        assert result == output

    @pytest.mark.unit
    def test_download_falls_back_to_next_strategy(self, acquisition, temp_dir):
        """A failing strategy hands over to the next one."""
        output = temp_dir / "job_source.mp4"
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            if len(calls) == 1:
                return completed(returncode=1, stderr="HTTP Error 403")
            output.write_bytes(b"data")
            return completed()

        with patch("subprocess.run", side_effect=fake_run):
            acquisition.download(JobRequest(url=URL), output)

        assert len(calls) == 2
        assert "youtube:player_client=android,player_skip=webpage" in calls[1]

    @pytest.mark.unit
    def test_download_missing_output_is_a_failure(self, acquisition, temp_dir):
        """Exit code 0 without a file still moves on to the next strategy."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed()

            with pytest.raises(AcquisitionFailure, match="no output"):
                acquisition.download(JobRequest(url=URL), temp_dir / "missing.mp4")

            assert mock_run.call_count == 3

    @pytest.mark.unit
    def test_download_all_strategies_fail(self, acquisition, temp_dir):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed(returncode=1, stderr="blocked")

            with pytest.raises(AcquisitionFailure, match="blocked"):
                acquisition.download(JobRequest(url=URL), temp_dir / "x.mp4")

    @pytest.mark.unit
    def test_download_passes_ffmpeg_location(self, temp_dir):
        acquisition = MediaAcquisition(ToolConfig(ffmpeg_location="/opt/ffmpeg/bin"))
        output = temp_dir / "x.mp4"
        output.write_bytes(b"data")

        with patch("subprocess.run") as mock_run:
            mock_run.return_value = completed()
            acquisition.download(JobRequest(url=URL), output)

            cmd = mock_run.call_args[0][0]
            assert cmd[cmd.index("--ffmpeg-location") + 1] == "/opt/ffmpeg/bin"
