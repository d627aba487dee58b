"""
SMS-Prosto gateway client (SMS / WhatsApp / Telegram / VK / Viber cascades).

The gateway exposes a query-string API: every call is a GET on the API root
with `method`, `key` and `format=json` plus method parameters. A response
whose `response.msg.err_code` is not "0" is an error.

Methods used:
- get_profile: account balance (`credits`)
- push_msg: send a message through a route cascade (e.g. "wp-sms")
- get_status: delivery status of a sent message

In test mode no HTTP request is made: the request is logged and a canned
success is returned.
"""

import logging
import re
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import get_settings
from shared.exceptions import ChannelError
from shared.settings_service import MessagingSettingsService

logger = logging.getLogger(__name__)

# Gateway error code used for transport failures (no gateway answer)
TRANSPORT_ERROR_CODE = "699"


def _test_mode_response(sender_name: str) -> dict[str, Any]:
    return {
        "response": {
            "msg": {"err_code": "0", "text": "Test mode success", "type": "success"},
            "data": {
                "id": "0",
                "credits": "100.00",
                "credits_used": "0.00",
                "credits_name": "TEST",
                "currency": "RUB",
                "sender_name": sender_name,
                "n_raw_sms": 1,
                "status": "delivered",
            },
        }
    }


def _mask(params: dict[str, str]) -> dict[str, str]:
    return {k: ("***" if k == "key" else v) for k, v in params.items()}


class SmsGatewayClient:
    """
    Client for the SMS-Prosto HTTP API.

    Credentials and defaults come from MessagingSettingsService, so admin
    edits apply without a restart.
    """

    def __init__(
        self,
        settings_service: MessagingSettingsService,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        config = get_settings()
        # Remove trailing slash to avoid double slashes in URLs
        self.api_url = (api_url or config.SMS_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else config.SMS_REQUEST_TIMEOUT
        self.settings_service = settings_service
        self._transport = transport

        logger.info(f"SmsGatewayClient initialized: {self.api_url}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.HTTPError),
        reraise=True,
    )
    async def _http_get(self, params: dict[str, str]) -> dict[str, Any]:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            try:
                response = await client.get(f"{self.api_url}/", params=params)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as e:
                logger.error(f"HTTP error calling gateway method {params.get('method')}: {e}")
                raise

    async def _request(self, method: str, params: dict[str, str]) -> dict[str, Any]:
        """
        Call a gateway method.

        Raises:
            ChannelError: Missing API key, transport failure, non-JSON answer
                or gateway err_code != "0"
        """
        settings = await self.settings_service.get()
        if not settings.api_key:
            raise ChannelError("API key is not configured", channel_code="401")

        query = {"method": method, "key": settings.api_key, "format": "json", **params}

        if settings.test_mode:
            logger.info(f"TEST MODE - gateway request: {_mask(query)}")
            return _test_mode_response(settings.sender_name)

        try:
            data = await self._http_get(query)
        except httpx.HTTPStatusError as e:
            raise ChannelError(
                "Failed to communicate with SMS gateway",
                channel_code=str(e.response.status_code),
            ) from e
        except httpx.HTTPError as e:
            raise ChannelError(
                "Failed to communicate with SMS gateway",
                channel_code=TRANSPORT_ERROR_CODE,
                details=str(e),
            ) from e
        except ValueError as e:
            raise ChannelError(
                "Invalid JSON from SMS gateway", channel_code=TRANSPORT_ERROR_CODE
            ) from e

        msg = (data.get("response") or {}).get("msg") or {}
        err_code = str(msg.get("err_code", ""))
        if err_code != "0":
            raise ChannelError(
                msg.get("text") or "Unknown SMS gateway error",
                channel_code=err_code or None,
                details=(data.get("response") or {}).get("data"),
            )
        return data

    async def check_balance(self) -> float:
        """Account balance in gateway credits."""
        data = await self._request("get_profile", {})
        credits = (data["response"].get("data") or {}).get("credits") or "0"
        try:
            return float(credits)
        except (TypeError, ValueError) as e:
            raise ChannelError(f"Unexpected balance value: {credits!r}", channel_code="balance") from e

    async def send_message(
        self,
        phone: str,
        text: str,
        priority: int | None = None,
        route: str | None = None,
    ) -> bool:
        """
        Send a message through a route cascade.

        Args:
            phone: Client phone in any format (non-digits are stripped)
            text: Rendered message body
            priority: 1 (high) .. 4 (mass); settings default when omitted
            route: Cascade route such as "wp-sms"; settings default when omitted

        Returns:
            True when the gateway accepted the message

        Raises:
            ChannelError: Gateway rejected the message or is unreachable
        """
        settings = await self.settings_service.get()
        params = {
            "text": text,
            "phone": re.sub(r"\D", "", phone),
            "sender_name": settings.sender_name,
            "priority": str(priority or settings.default_priority),
            "route": route or settings.default_route,
        }
        data = await self._request("push_msg", params)
        accepted = str(data["response"]["msg"].get("err_code")) == "0"
        logger.info(
            f"Gateway accepted message via route {params['route']}",
            extra={"client_phone": phone},
        )
        return accepted

    async def get_message_status(self, message_id: str) -> str:
        data = await self._request("get_status", {"id": message_id})
        return (data["response"].get("data") or {}).get("status") or "unknown"
