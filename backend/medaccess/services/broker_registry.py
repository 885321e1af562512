from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable

from medaccess.schemas.authorization import BrokerOutcome
from medaccess.services.broker import AuthorizationBroker
from medaccess.services.otp_channel import OtpChannel

logger = logging.getLogger(__name__)


class BrokerRegistry:
    """One broker per portal session, least recently used evicted first."""

    def __init__(
        self,
        channel: OtpChannel,
        cooldown_seconds: int | None = None,
        min_digits: int | None = None,
        country_code: str | None = None,
        max_sessions: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.channel = channel
        self.cooldown_seconds = cooldown_seconds
        self.min_digits = min_digits
        self.country_code = country_code
        self.max_sessions = max_sessions
        self._clock = clock
        self._brokers: OrderedDict[str, AuthorizationBroker] = OrderedDict()

    def __len__(self) -> int:
        return len(self._brokers)

    def get(self, session_id: str) -> AuthorizationBroker | None:
        broker = self._brokers.get(session_id)
        if broker is not None:
            self._brokers.move_to_end(session_id)
        return broker

    def get_or_create(self, session_id: str) -> AuthorizationBroker:
        broker = self.get(session_id)
        if broker is not None:
            return broker
        broker = AuthorizationBroker(
            self.channel,
            cooldown_seconds=self.cooldown_seconds,
            min_digits=self.min_digits,
            country_code=self.country_code,
            clock=self._clock,
        )
        self._brokers[session_id] = broker
        while len(self._brokers) > self.max_sessions:
            evicted, old = self._brokers.popitem(last=False)
            if old.outcome == BrokerOutcome.PENDING:
                old.cancel()
            logger.info("Evicted authorization broker for session %s", evicted)
        return broker
