from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Union

from medaccess.schemas.authorization import Intent, VerifiedIdentity

logger = logging.getLogger(__name__)

ResumeHandler = Callable[[Intent, VerifiedIdentity], Union[Any, Awaitable[Any]]]


class PendingActionQueue:
    """Single slot holding the intent waiting on a challenge.

    Enrolling replaces whatever was there; the replaced handler is dropped
    without being called. The slot is cleared before a handler runs, so a
    handler fires at most once even if it raises.
    """

    def __init__(self) -> None:
        self._intent: Intent | None = None
        self._handler: ResumeHandler | None = None

    @property
    def pending(self) -> Intent | None:
        return self._intent

    def enroll(self, intent: Intent, handler: ResumeHandler) -> None:
        if self._intent is not None:
            logger.info(
                "Replacing pending %s intent for %s with %s for %s",
                self._intent.kind.value,
                self._intent.subject_id,
                intent.kind.value,
                intent.subject_id,
            )
        self._intent = intent
        self._handler = handler

    async def resolve(self, identity: VerifiedIdentity) -> Any:
        if self._intent is None or self._handler is None:
            return None
        intent, handler = self._intent, self._handler
        self.discard()
        result = handler(intent, identity)
        if inspect.isawaitable(result):
            result = await result
        return result

    def discard(self) -> None:
        self._intent = None
        self._handler = None
