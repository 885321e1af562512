from __future__ import annotations

import logging
import time
from typing import Any, Callable

from medaccess.schemas.authorization import (
    BrokerOutcome,
    ChallengeStep,
    ChallengeView,
    Intent,
    IntentKind,
    ResumedAction,
    UserRole,
)
from medaccess.services.challenge import ChallengeStateMachine
from medaccess.services.otp_channel import OtpChannel
from medaccess.services.pending_actions import PendingActionQueue, ResumeHandler

logger = logging.getLogger(__name__)

# Role the verified phone owner must hold before an intent of each kind may run.
REQUIRED_ROLES: dict[IntentKind, UserRole] = {
    IntentKind.VIEW_RECORD: UserRole.PATIENT,
    IntentKind.EDIT_RECORD: UserRole.PATIENT,
    IntentKind.DELETE_RECORD: UserRole.PATIENT,
    IntentKind.CREATE_SUB_RECORD: UserRole.PATIENT,
    IntentKind.VIEW_SUB_RECORD_DETAIL: UserRole.PATIENT,
}

ACCESS_DENIED_MESSAGES: dict[UserRole, str] = {
    UserRole.PATIENT: "This user is not a patient.",
    UserRole.DOCTOR: "This user is not a member of the care staff.",
    UserRole.ADMIN: "This user is not an administrator.",
}


class NoActiveChallengeError(RuntimeError):
    pass


class AuthorizationBroker:
    """Entry point for running a sensitive action behind a phone challenge.

    ``request_authorization`` parks the intent and opens a challenge; the
    mutators drive it. Once the code is verified and the identity holds the
    role the intent requires, the parked handler is replayed with that
    identity. Only one challenge is live at a time: a new request replaces
    the previous one and its handler never runs.
    """

    def __init__(
        self,
        channel: OtpChannel,
        cooldown_seconds: int | None = None,
        min_digits: int | None = None,
        country_code: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.channel = channel
        self.queue = PendingActionQueue()
        self._cooldown_seconds = cooldown_seconds
        self._min_digits = min_digits
        self._country_code = country_code
        self._clock = clock
        self._challenge: ChallengeStateMachine | None = None
        self._intent: Intent | None = None
        self._outcome = BrokerOutcome.IDLE
        self._result: Any = None

    @property
    def challenge(self) -> ChallengeStateMachine | None:
        return self._challenge

    @property
    def outcome(self) -> BrokerOutcome:
        return self._outcome

    @property
    def result(self) -> Any:
        """Return value of the last replayed handler."""
        return self._result

    def request_authorization(
        self,
        intent: Intent,
        handler: ResumeHandler,
        seed_phone: str | None = None,
    ) -> ChallengeView:
        if self._challenge is not None:
            self._challenge.cancel()
        self.queue.enroll(intent, handler)
        self._challenge = ChallengeStateMachine(
            self.channel,
            seed_phone=seed_phone,
            cooldown_seconds=self._cooldown_seconds,
            min_digits=self._min_digits,
            country_code=self._country_code,
            clock=self._clock,
        )
        self._intent = intent
        self._outcome = BrokerOutcome.PENDING
        self._result = None
        logger.info(
            "Authorization requested for %s on %s (challenge %s)",
            intent.kind.value,
            intent.subject_id,
            self._challenge.id,
        )
        return self.snapshot()

    def _require_challenge(self) -> ChallengeStateMachine:
        if self._challenge is None:
            raise NoActiveChallengeError("No authorization has been requested.")
        return self._challenge

    def _pending_challenge(self) -> ChallengeStateMachine | None:
        challenge = self._require_challenge()
        if self._outcome != BrokerOutcome.PENDING:
            return None
        return challenge

    def submit_phone(self, phone: str) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            challenge.set_phone(phone)
        return self.snapshot()

    async def send_code(self) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            await challenge.send_code()
        return self.snapshot()

    def submit_digit(self, index: int, value: str) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            challenge.submit_digit(index, value)
        return self.snapshot()

    def backspace(self, index: int) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            challenge.backspace(index)
        return self.snapshot()

    def submit_paste(self, text: str) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            challenge.paste(text)
        return self.snapshot()

    async def resend(self) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            await challenge.resend()
        return self.snapshot()

    def back(self) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge:
            challenge.back()
        return self.snapshot()

    async def verify(self) -> ChallengeView:
        challenge = self._pending_challenge()
        if challenge is None:
            return self.snapshot()
        await challenge.verify()
        # A new request or a cancel may have landed while the channel was busy.
        if challenge is not self._challenge or self._outcome != BrokerOutcome.PENDING:
            return self.snapshot()
        if challenge.step == ChallengeStep.RESOLVED:
            await self._settle(challenge)
        return self.snapshot()

    async def _settle(self, challenge: ChallengeStateMachine) -> None:
        identity = challenge.identity
        intent = self._intent
        required = REQUIRED_ROLES[intent.kind]
        if not identity.has_role(required):
            logger.warning(
                "Challenge %s verified a %s identity where %s is required; denying %s",
                challenge.id,
                identity.role,
                required.value,
                intent.kind.value,
            )
            challenge.deny(ACCESS_DENIED_MESSAGES[required])
            self.queue.discard()
            self._outcome = BrokerOutcome.DENIED
            return

        self._outcome = BrokerOutcome.AUTHORIZED
        logger.info("Challenge %s authorized; resuming %s", challenge.id, intent.kind.value)
        self._result = await self.queue.resolve(identity)

    def cancel(self) -> ChallengeView:
        challenge = self._require_challenge()
        if self._outcome in (BrokerOutcome.PENDING, BrokerOutcome.DENIED):
            challenge.cancel()
            self.queue.discard()
            self._outcome = BrokerOutcome.DISCARDED
            logger.info("Challenge %s cancelled", challenge.id)
        return self.snapshot()

    def snapshot(self) -> ChallengeView:
        challenge = self._challenge
        if challenge is None:
            return ChallengeView(outcome=self._outcome)
        completed = self._result if isinstance(self._result, ResumedAction) else None
        return ChallengeView(
            outcome=self._outcome,
            step=challenge.step,
            challenge_id=challenge.id,
            intent=self._intent,
            phone_number=challenge.phone_number,
            attempt_code=list(challenge.attempt_code),
            focus_index=challenge.focus_index,
            cooldown_remaining_seconds=challenge.cooldown_remaining_seconds,
            can_resend=challenge.can_resend,
            is_sending=challenge.is_sending,
            is_verifying=challenge.is_verifying,
            last_error=challenge.last_error,
            completed_action=completed,
        )
