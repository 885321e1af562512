from __future__ import annotations

import logging
import time
from typing import Callable
from uuid import uuid4

from medaccess.core.settings import get_settings
from medaccess.schemas.authorization import (
    ChallengeError,
    ChallengeErrorCode,
    ChallengeStep,
    VerifiedIdentity,
)
from medaccess.services.otp_channel import OtpChannel, OtpChannelError
from medaccess.services.phone import is_valid_phone, mask_phone, national_number, normalize_phone

logger = logging.getLogger(__name__)

CODE_LENGTH = 4

INVALID_PHONE_MESSAGE = "Enter a valid phone number of at least {min_digits} digits."
SEND_FAILED_MESSAGE = "Failed to send the verification code. Please try again."
INCOMPLETE_CODE_MESSAGE = "Enter the complete 4-digit code."
INCORRECT_CODE_MESSAGE = "Incorrect code. Please try again."


def _channel_message(exc: Exception, default: str) -> str:
    message = exc.message if isinstance(exc, OtpChannelError) else None
    return message if isinstance(message, str) and message else default


class ChallengeStateMachine:
    """One run of the phone -> code verification sequence.

    Local input problems are reported synchronously and never reach the
    channel. Channel calls are tagged with the current generation; ``back``
    and ``cancel`` bump it so a response arriving afterwards is dropped.
    """

    def __init__(
        self,
        channel: OtpChannel,
        seed_phone: str | None = None,
        cooldown_seconds: int | None = None,
        min_digits: int | None = None,
        country_code: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self.id = uuid4().hex
        self.channel = channel
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.resend_cooldown_seconds
        )
        self.min_digits = min_digits if min_digits is not None else settings.phone_min_digits
        self.country_code = country_code if country_code is not None else settings.phone_country_code
        self._clock = clock

        self.step = ChallengeStep.PHONE_ENTRY
        self.phone_number = national_number(seed_phone, self.country_code, self.min_digits) if seed_phone else ""
        self.attempt_code = [""] * CODE_LENGTH
        self.focus_index = 0
        self.last_error: ChallengeError | None = None
        self.identity: VerifiedIdentity | None = None
        self.discarded = False
        self.is_sending = False
        self.is_verifying = False

        self._generation = 0
        self._sent_to: str | None = None
        self._cooldown_started_at: float | None = None

    @property
    def code(self) -> str:
        return "".join(self.attempt_code)

    @property
    def is_terminal(self) -> bool:
        return self.discarded or self.step == ChallengeStep.RESOLVED

    @property
    def cooldown_remaining_seconds(self) -> int:
        if self.step != ChallengeStep.CODE_ENTRY or self._cooldown_started_at is None:
            return 0
        elapsed = int(self._clock() - self._cooldown_started_at)
        return max(0, self.cooldown_seconds - elapsed)

    @property
    def can_resend(self) -> bool:
        return (
            not self.discarded
            and self.step == ChallengeStep.CODE_ENTRY
            and not self.is_sending
            and self.cooldown_remaining_seconds == 0
        )

    def _set_error(self, code: ChallengeErrorCode, message: str) -> None:
        self.last_error = ChallengeError(code=code, message=message)

    def _is_stale(self, generation: int) -> bool:
        return self.discarded or generation != self._generation

    def _clear_code(self) -> None:
        self.attempt_code = [""] * CODE_LENGTH
        self.focus_index = 0

    def _check_index(self, index: int) -> None:
        if not 0 <= index < CODE_LENGTH:
            raise ValueError(f"Code slot index must be between 0 and {CODE_LENGTH - 1}, got {index}")

    def set_phone(self, phone: str) -> None:
        if self.discarded or self.step != ChallengeStep.PHONE_ENTRY:
            return
        self.phone_number = phone.strip()

    async def _dispatch_send(self, normalized: str) -> bool:
        generation = self._generation
        self.is_sending = True
        self.last_error = None
        try:
            await self.channel.send_code(normalized)
        except Exception as exc:
            if self._is_stale(generation):
                logger.debug("Dropping send failure for superseded challenge %s", self.id)
                return False
            if not isinstance(exc, OtpChannelError):
                logger.exception("Sending a code to %s failed", mask_phone(normalized))
            message = _channel_message(exc, SEND_FAILED_MESSAGE)
            self._set_error(ChallengeErrorCode.SEND_FAILED, message)
            return False
        finally:
            if generation == self._generation:
                self.is_sending = False

        if self._is_stale(generation):
            logger.debug("Dropping send response for superseded challenge %s", self.id)
            return False
        return True

    async def send_code(self) -> None:
        if self.discarded or self.step != ChallengeStep.PHONE_ENTRY or self.is_sending:
            return
        if not is_valid_phone(self.phone_number, self.country_code, self.min_digits):
            self._set_error(
                ChallengeErrorCode.INVALID_PHONE,
                INVALID_PHONE_MESSAGE.format(min_digits=self.min_digits),
            )
            return

        normalized = normalize_phone(self.phone_number, self.country_code, self.min_digits)
        if not await self._dispatch_send(normalized):
            return

        self._sent_to = normalized
        self.step = ChallengeStep.CODE_ENTRY
        self._clear_code()
        self.last_error = None
        self._cooldown_started_at = self._clock()

    async def resend(self) -> None:
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY or self.is_sending:
            return
        if self.cooldown_remaining_seconds > 0:
            return
        if await self._dispatch_send(self._sent_to):
            self.last_error = None
            self._cooldown_started_at = self._clock()

    def submit_digit(self, index: int, value: str) -> None:
        self._check_index(index)
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY:
            return
        if value == "":
            self.attempt_code[index] = ""
            self.focus_index = index
            return
        digits = [ch for ch in value if ch.isdigit()]
        if not digits:
            return
        self.attempt_code[index] = digits[0]
        self.focus_index = min(index + 1, CODE_LENGTH - 1)

    def backspace(self, index: int) -> None:
        self._check_index(index)
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY:
            return
        if self.attempt_code[index]:
            self.attempt_code[index] = ""
            self.focus_index = index
        elif index > 0:
            self.focus_index = index - 1

    def paste(self, text: str) -> None:
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY:
            return
        digits = "".join(ch for ch in text if ch.isdigit())[:CODE_LENGTH]
        if not digits:
            return
        for i, digit in enumerate(digits):
            self.attempt_code[i] = digit
        self.focus_index = min(len(digits), CODE_LENGTH - 1)

    async def verify(self) -> None:
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY or self.is_verifying:
            return
        code = self.code
        if len(code) < CODE_LENGTH:
            self._set_error(ChallengeErrorCode.INCOMPLETE_CODE, INCOMPLETE_CODE_MESSAGE)
            return

        generation = self._generation
        self.is_verifying = True
        self.last_error = None
        try:
            identity = await self.channel.verify_code(self._sent_to, code)
        except Exception as exc:
            if self._is_stale(generation):
                logger.debug("Dropping verify failure for superseded challenge %s", self.id)
                return
            if not isinstance(exc, OtpChannelError):
                logger.exception("Verifying a code for %s failed", mask_phone(self._sent_to))
            message = _channel_message(exc, INCORRECT_CODE_MESSAGE)
            self._clear_code()
            self._set_error(ChallengeErrorCode.INCORRECT_CODE, message)
            return
        finally:
            if generation == self._generation:
                self.is_verifying = False

        if self._is_stale(generation):
            logger.debug("Dropping verify response for superseded challenge %s", self.id)
            return
        self.identity = identity
        self.step = ChallengeStep.RESOLVED
        self.last_error = None
        self._cooldown_started_at = None

    def deny(self, message: str) -> None:
        self._set_error(ChallengeErrorCode.ACCESS_DENIED, message)

    def back(self) -> None:
        if self.discarded or self.step != ChallengeStep.CODE_ENTRY:
            return
        self._generation += 1
        self.step = ChallengeStep.PHONE_ENTRY
        self._clear_code()
        self.last_error = None
        self.is_sending = False
        self.is_verifying = False
        self._sent_to = None
        self._cooldown_started_at = None

    def cancel(self) -> None:
        if self.discarded:
            return
        self._generation += 1
        self.discarded = True
        self.is_sending = False
        self.is_verifying = False
