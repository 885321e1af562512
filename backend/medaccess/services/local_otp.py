from __future__ import annotations

import json
import logging
import secrets

from medaccess.core.settings import Settings, get_settings
from medaccess.schemas.authorization import VerifiedIdentity
from medaccess.services.otp_channel import OtpChannelError
from medaccess.services.phone import mask_phone, normalize_phone
from medaccess.services.sms_client import SmsClient
from medaccess.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

CODE_LENGTH = 4


class OtpRateLimitError(OtpChannelError):
    pass


def otp_key(phone: str) -> str:
    return f"otp:{phone}"


def rate_key(phone: str) -> str:
    return f"otp_rate:{phone}"


def attempts_key(phone: str) -> str:
    return f"otp_attempts:{phone}"


class LocalOtpChannel:
    """Issues and checks codes itself, keeping them in redis.

    Codes go out by SMS only; nothing here returns or logs the value.
    """

    def __init__(
        self,
        redis_client,
        directory: UserDirectory,
        sms_client: SmsClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.redis = redis_client
        self.directory = directory
        self.sms_client = sms_client or SmsClient(settings=self.settings)

    def _normalize(self, phone: str) -> str:
        return normalize_phone(phone, self.settings.phone_country_code, self.settings.phone_min_digits)

    async def send_code(self, phone: str) -> None:
        settings = self.settings
        normalized = self._normalize(phone)
        if not normalized:
            raise OtpChannelError("Invalid phone number.")

        if self.directory.find_by_phone(normalized) is None:
            raise OtpChannelError("No user found with this phone number.")

        key = rate_key(normalized)
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, settings.otp_rate_window_seconds)
        if count > settings.otp_rate_limit:
            raise OtpRateLimitError("Too many code requests. Please try again later.")

        code = f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"
        payload = {"code": code}
        await self.redis.setex(otp_key(normalized), settings.otp_ttl_seconds, json.dumps(payload))
        await self.redis.delete(attempts_key(normalized))

        minutes = max(1, settings.otp_ttl_seconds // 60)
        message = f"Your verification code is {code}. It expires in {minutes} minutes."
        await self.sms_client.send_sms(normalized, message)
        logger.info("Verification code issued for %s", mask_phone(normalized))

    async def verify_code(self, phone: str, code: str) -> VerifiedIdentity:
        settings = self.settings
        normalized = self._normalize(phone)
        if not normalized:
            raise OtpChannelError("Invalid phone number.")

        key = otp_key(normalized)
        stored = await self.redis.get(key)
        if not stored:
            raise OtpChannelError("The code has expired. Please request a new one.")

        # Counted with INCR so concurrent guesses cannot exceed the limit.
        counter = attempts_key(normalized)
        attempts = await self.redis.incr(counter)
        if attempts == 1:
            await self.redis.expire(counter, settings.otp_ttl_seconds)
        if attempts > settings.otp_max_attempts:
            await self.redis.delete(key, counter)
            raise OtpChannelError("The code has expired. Please request a new one.")

        payload = json.loads(stored)
        if str(code).strip() != str(payload.get("code")):
            raise OtpChannelError("Incorrect verification code.")

        await self.redis.delete(key, counter)
        user = self.directory.find_by_phone(normalized)
        if user is None:
            raise OtpChannelError("No user found with this phone number.")
        logger.info("Verification code accepted for %s", mask_phone(normalized))
        return user.to_identity()
