"""
Outbound half of the WhatsApp Cloud API.

The gateway only knows how to POST a message object to the Graph API;
the interactive payloads themselves are built in keyboards.whatsapp.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from services.errors import MessagingError
from services.retry import retry

logger = logging.getLogger(__name__)


class WhatsAppGateway:
    def __init__(
        self,
        url_template: str,
        access_token: str,
        default_phone_number_id: str = "",
        timeout: int = 15,
        attempts: int = 3,
    ):
        self.url_template = url_template
        self.default_phone_number_id = default_phone_number_id
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.attempts = attempts
        self._session: Optional[aiohttp.ClientSession] = None

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self.headers, timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def send(self, business_id: str, to: str, message: dict) -> dict:
        """
        Send one message object ({"type": "text", "text": {...}} and so on).

        business_id is the receiving phone number id of the inbound event;
        replies go out from the same number.
        """
        phone_number_id = business_id or self.default_phone_number_id
        url = self.url_template.format(phone_number_id=phone_number_id)
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": to}
        payload.update(message)

        @retry(max_attempts=self.attempts, delay=1.0, exceptions=(aiohttp.ClientError, asyncio.TimeoutError))
        async def post():
            async with self._client().post(url, json=payload) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    # 4xx is a payload problem; retrying won't help
                    if resp.status < 500:
                        raise MessagingError(f"Graph API rejected {message.get('type')}: {resp.status} {body[:300]}")
                    resp.raise_for_status()
                return await resp.json()

        try:
            return await post()
        except MessagingError as e:
            logger.error("WhatsApp send to %s failed: %s", to, e)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error("WhatsApp send to %s failed: %r", to, e)
            raise MessagingError(f"send to {to} failed: {e!r}") from e
