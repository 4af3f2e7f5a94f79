"""Turns chat text into a validated :class:`JobRequest`.

Grammar::

    /dl <url> [START=<time>] [END=<time>] [Q=<quality>] [MP3=<true|false>]

Times are ``M:SS`` or ``H:MM:SS``. The leading group takes any number of
digits; every following group is exactly two digits in 0..59. Keys are
case-insensitive and may appear at most once.
"""

import re
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

from pydantic import BaseModel, ConfigDict

from clipbot.core.errors import InvalidInput

KNOWN_QUALITIES = ("144", "240", "360", "480", "720", "1080", "1440", "2160", "best", "worst")

_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_PARAM_RE = re.compile(r"^([A-Za-z0-9_]+)=(.*)$")
_TIME_RE = re.compile(r"^(\d+):(\d{2})(?::(\d{2}))?$")

PARAM_KEYS = ("START", "END", "Q", "MP3")


class JobRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    start_time: str | None = None
    end_time: str | None = None
    quality: str | None = None
    mp3: bool = False

    @property
    def is_trimmed(self) -> bool:
        return self.start_time is not None or self.end_time is not None

    @property
    def needs_postprocess(self) -> bool:
        return self.is_trimmed or self.mp3


def time_to_seconds(value: str) -> int:
    """Parse ``M:SS`` / ``H:MM:SS`` into seconds. Raises InvalidInput."""
    match = _TIME_RE.match(value.strip())
    if not match:
        raise InvalidInput(f"Invalid time format: {value!r} (use M:SS or H:MM:SS)")

    first, second, third = match.groups()
    if third is None:
        minutes, seconds = int(first), int(second)
        if seconds > 59:
            raise InvalidInput(f"Invalid time: {value!r} (seconds must be 0-59)")
        return minutes * 60 + seconds

    hours, minutes, seconds = int(first), int(second), int(third)
    if minutes > 59 or seconds > 59:
        raise InvalidInput(f"Invalid time: {value!r} (minutes and seconds must be 0-59)")
    return hours * 3600 + minutes * 60 + seconds


def format_seconds(total: int) -> str:
    """Render seconds as ``M:SS`` below one hour, ``H:MM:SS`` above."""
    hours, rest = divmod(int(total), 3600)
    minutes, seconds = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def normalize_time(value: str) -> str:
    return format_seconds(time_to_seconds(value))


class CommandParser:
    """Pure parser for download commands."""

    def __init__(self, allowed_domains: list[str] | tuple[str, ...]) -> None:
        self.allowed_domains = {d.lower() for d in allowed_domains}

    def is_allowed_url(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False
        host = (parsed.hostname or "").lower()
        return parsed.scheme in ("http", "https") and host in self.allowed_domains

    def parse(self, text: str) -> JobRequest:
        """Parse the arguments of a ``/dl`` command (command word optional)."""
        tokens = text.split()
        if tokens and tokens[0].startswith("/"):
            tokens = tokens[1:]

        url: str | None = None
        params: dict[str, str] = {}

        for token in tokens:
            if url is None and _URL_RE.fullmatch(token):
                url = token
                continue

            match = _PARAM_RE.match(token)
            if not match:
                raise InvalidInput(f"Unexpected argument: {token!r}")

            key, value = match.group(1).upper(), match.group(2)
            if key not in PARAM_KEYS:
                raise InvalidInput(f"Unknown parameter: {match.group(1)}")
            if key in params:
                raise InvalidInput(f"Duplicate parameter: {key}")
            params[key] = value

        if url is None:
            raise InvalidInput("No URL found in command")
        if not self.is_allowed_url(url):
            raise InvalidInput(f"URL host is not supported: {url}")

        start = params.get("START")
        end = params.get("END")
        if start is not None:
            time_to_seconds(start)
        if end is not None:
            time_to_seconds(end)

        return JobRequest(
            url=url,
            start_time=start,
            end_time=end,
            quality=_parse_quality(params["Q"]) if "Q" in params else None,
            mp3=_parse_bool(params["MP3"]) if "MP3" in params else False,
        )


def _parse_quality(value: str) -> str:
    lowered = value.lower()
    if lowered in KNOWN_QUALITIES:
        return lowered
    if lowered.isascii() and lowered.isdigit() and int(lowered) > 0:
        return str(int(lowered))
    raise InvalidInput(f"Invalid quality: {value!r}")


def _parse_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise InvalidInput(f"MP3 must be true or false, got {value!r}")


@dataclass(frozen=True)
class Command:
    name: str
    args: str = ""


def resolve_command(text: str) -> Command:
    """Classify chat text as ``help``, ``dl`` or ``unknown``.

    ``/start <payload>`` is a deep link: the payload is URL-decoded and
    handled as ``/dl <payload>``.
    """
    stripped = text.strip()
    if not stripped:
        return Command("unknown")

    head, _, rest = stripped.partition(" ")
    word = head.split("@", 1)[0].lower()
    rest = rest.strip()

    if word == "/start":
        if not rest:
            return Command("help")
        return Command("dl", unquote(rest.split()[0]))
    if word == "/help":
        return Command("help")
    if word == "/dl":
        return Command("dl", rest)
    return Command("unknown")


def parse_command(text: str, allowed_domains: list[str] | tuple[str, ...]) -> JobRequest:
    return CommandParser(allowed_domains).parse(text)
