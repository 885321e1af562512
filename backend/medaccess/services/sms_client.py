from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

import httpx

from medaccess.core.settings import Settings, get_settings
from medaccess.services.phone import mask_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmsResult:
    message_id: str
    status: str | None = None


class SmsClient:
    def __init__(
        self,
        api_key: str | None = None,
        messaging_profile_id: str | None = None,
        from_number: str | None = None,
        base_url: str | None = None,
        mode: Literal["mock", "live"] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.mode = mode or settings.messaging_mode
        self.api_key = api_key or settings.telnyx_api_key
        self.messaging_profile_id = messaging_profile_id or settings.telnyx_messaging_profile_id
        self.from_number = from_number or settings.telnyx_phone_number
        self.base_url = base_url or settings.telnyx_base_url
        self._transport = transport

    async def send_sms(self, to: str, text: str) -> SmsResult:
        if self.mode == "mock" or not self.api_key:
            stamp = int(datetime.now(timezone.utc).timestamp())
            logger.info("Mock SMS to %s suppressed", mask_phone(to))
            return SmsResult(message_id=f"mock-sms-{stamp}", status="mock")

        payload: dict[str, object] = {"to": f"+{to.lstrip('+')}", "text": text}
        if self.from_number:
            payload["from"] = self.from_number
        if self.messaging_profile_id:
            payload["messaging_profile_id"] = self.messaging_profile_id

        url = f"{self.base_url.rstrip('/')}/messages"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            resp = await client.post(url, json=payload, headers=headers)
            if not resp.is_success:
                logger.error(
                    "SMS delivery failed: %s %s",
                    resp.status_code,
                    resp.reason_phrase,
                )
                resp.raise_for_status()
            data = resp.json().get("data", {})
        message_id = data.get("id") or data.get("message_id") or ""
        status = data.get("status")
        return SmsResult(message_id=message_id, status=status)
