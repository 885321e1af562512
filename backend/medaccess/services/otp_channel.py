from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from medaccess.core.settings import get_settings
from medaccess.schemas.authorization import VerifiedIdentity
from medaccess.services.phone import mask_phone

logger = logging.getLogger(__name__)


class OtpChannelError(RuntimeError):
    """The channel refused a send or verify request.

    ``message`` is the channel's own wording when it provided one.
    """

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "OTP channel request failed")
        self.message = message


class OtpChannel(Protocol):
    async def send_code(self, phone: str) -> None: ...

    async def verify_code(self, phone: str, code: str) -> VerifiedIdentity: ...


def _backend_message(body: dict[str, Any]) -> str | None:
    message = body.get("message")
    # Validation middleware may send a list or an object here.
    return message if isinstance(message, str) and message else None


class HttpOtpChannel:
    """OTP channel backed by the records backend's PIN endpoints.

    Both endpoints answer with ``{"status", "data", "message"}``. The body of a
    send response is discarded: the code must never reach this side.
    """

    def __init__(
        self,
        base_url: str | None = None,
        send_path: str | None = None,
        verify_path: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url or settings.otp_base_url
        self.send_path = send_path or settings.otp_send_path
        self.verify_path = verify_path or settings.otp_verify_path
        self.timeout = timeout if timeout is not None else settings.otp_timeout_seconds
        self._transport = transport

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._url(path)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("OTP channel request to %s failed: %s", url, exc)
            raise OtpChannelError() from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not resp.is_success:
            logger.warning(
                "OTP channel returned %s %s for %s",
                resp.status_code,
                resp.reason_phrase,
                url,
            )
            raise OtpChannelError(_backend_message(body))
        if body.get("status") != "success":
            raise OtpChannelError(_backend_message(body))
        return body

    async def send_code(self, phone: str) -> None:
        await self._post(self.send_path, {"telephone": phone})
        logger.info("Verification code requested for %s", mask_phone(phone))

    async def verify_code(self, phone: str, code: str) -> VerifiedIdentity:
        body = await self._post(self.verify_path, {"telephone": phone, "code": code})
        data = body.get("data")
        if not data:
            raise OtpChannelError(_backend_message(body))
        try:
            return VerifiedIdentity.model_validate(data)
        except ValidationError as exc:
            logger.warning("OTP channel returned an unusable identity for %s", mask_phone(phone))
            raise OtpChannelError() from exc
