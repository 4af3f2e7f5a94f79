"""Thin synchronous client for the Telegram Bot API."""

from pathlib import Path
from typing import Any

import httpx
import structlog

from clipbot.core.config import settings

logger = structlog.get_logger()


class TelegramError(Exception):
    """Raised when the Bot API rejects a call or cannot be reached."""

    def __init__(self, method: str, description: str, status_code: int | None = None) -> None:
        super().__init__(f"{method}: {description}")
        self.method = method
        self.description = description
        self.status_code = status_code


class TelegramClient:
    def __init__(
        self,
        token: str,
        api_url: str = "https://api.telegram.org",
        timeout: float = 60,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=f"{api_url.rstrip('/')}/bot{token}/",
            timeout=timeout,
            transport=transport,
        )

    def _call(self, method: str, data: dict[str, Any] | None = None, files: dict | None = None) -> Any:
        payload = {k: v for k, v in (data or {}).items() if v is not None}
        try:
            if files:
                response = self._client.post(method, data=payload, files=files)
            else:
                response = self._client.post(method, json=payload)
        except httpx.HTTPError as e:
            raise TelegramError(method, str(e)) from e

        try:
            body = response.json()
        except ValueError:
            raise TelegramError(method, f"Invalid response ({response.status_code})", response.status_code)

        if not body.get("ok"):
            raise TelegramError(
                method, body.get("description", "Unknown error"), response.status_code
            )
        return body.get("result")

    def send_message(self, chat_id: int, text: str, reply_to_message_id: int | None = None) -> dict:
        return self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "reply_to_message_id": reply_to_message_id,
                "disable_web_page_preview": True,
            },
        )

    def edit_message_text(self, chat_id: int, message_id: int, text: str) -> dict:
        return self._call(
            "editMessageText",
            {"chat_id": chat_id, "message_id": message_id, "text": text, "parse_mode": "HTML"},
        )

    def _send_file(
        self, method: str, field: str, chat_id: int, path: Path, caption: str | None,
        filename: str | None = None, **extra,
    ) -> dict:
        data = {"chat_id": chat_id, "caption": caption, "parse_mode": "HTML", **extra}
        with open(path, "rb") as fh:
            return self._call(method, data, files={field: (filename or path.name, fh)})

    def send_video(
        self,
        chat_id: int,
        path: Path,
        caption: str | None = None,
        filename: str | None = None,
        reply_to_message_id: int | None = None,
    ) -> dict:
        return self._send_file(
            "sendVideo", "video", chat_id, path, caption, filename,
            supports_streaming="true", reply_to_message_id=reply_to_message_id,
        )

    def send_audio(
        self,
        chat_id: int,
        path: Path,
        caption: str | None = None,
        filename: str | None = None,
        reply_to_message_id: int | None = None,
    ) -> dict:
        return self._send_file(
            "sendAudio", "audio", chat_id, path, caption, filename,
            reply_to_message_id=reply_to_message_id,
        )

    def get_updates(self, offset: int | None = None, timeout: int = 30) -> list[dict]:
        return self._call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]},
        )

    def close(self) -> None:
        self._client.close()


_client: TelegramClient | None = None


def get_telegram_client() -> TelegramClient:
    global _client
    if _client is None:
        _client = TelegramClient(
            settings.telegram_bot_token,
            api_url=settings.telegram_api_url,
            timeout=settings.telegram_timeout,
        )
    return _client
