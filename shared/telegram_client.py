"""
Telegram Bot API client for staff alerts.

Each staff member may configure their own bot token and chat id; alerts are
best effort, so every failure is logged and reported as False instead of
raised.
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)


class TelegramClient:
    """Minimal sendMessage client."""

    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config = get_settings()
        self.api_url = (api_url or config.TELEGRAM_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.TELEGRAM_REQUEST_TIMEOUT
        self._transport = transport

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, url: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            return await client.post(url, json=payload)

    async def send_message(
        self,
        bot_token: str,
        chat_id: str,
        text: str,
        parse_mode: str = "HTML",
    ) -> bool:
        """
        Send a chat message through a bot.

        Returns:
            True on a 2xx answer, False on any other answer or transport failure
        """
        payload = {"chat_id": chat_id, "text": text, "parse_mode": parse_mode}
        try:
            response = await self._post(f"{self.api_url}/bot{bot_token}/sendMessage", payload)
        except httpx.HTTPError as e:
            logger.error(f"Error sending Telegram message to chat {chat_id}: {e}")
            return False

        if not response.is_success:
            logger.error(
                f"Telegram API error for chat {chat_id}: "
                f"status={response.status_code} body={response.text[:200]}"
            )
            return False

        logger.debug(f"Telegram message delivered to chat {chat_id}")
        return True
