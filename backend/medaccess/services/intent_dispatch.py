from __future__ import annotations

import logging

from medaccess.schemas.authorization import Intent, IntentKind, ResumedAction, VerifiedIdentity
from medaccess.services.access_grants import AccessGrantRegistry
from medaccess.services.pending_actions import ResumeHandler

logger = logging.getLogger(__name__)

# Screen the portal opens once an intent is replayed.
RESUME_ACTIONS: dict[IntentKind, str] = {
    IntentKind.VIEW_RECORD: "open_record",
    IntentKind.EDIT_RECORD: "open_record_editor",
    IntentKind.DELETE_RECORD: "confirm_record_deletion",
    IntentKind.CREATE_SUB_RECORD: "open_new_consultation",
    IntentKind.VIEW_SUB_RECORD_DETAIL: "open_consultation_detail",
}


class IntentDispatcher:
    def __init__(self, grants: AccessGrantRegistry | None = None) -> None:
        self.grants = grants

    async def dispatch(
        self,
        intent: Intent,
        identity: VerifiedIdentity,
        requester_id: str | None = None,
    ) -> ResumedAction:
        action = RESUME_ACTIONS[intent.kind]
        # Grants are keyed by the verified patient. subject_id names the record
        # being opened, which for sub-record kinds is a consultation id.
        if self.grants is not None and requester_id:
            await self.grants.grant(requester_id, identity.id)
        logger.info("Resuming %s on %s as %s", intent.kind.value, intent.subject_id, action)
        return ResumedAction(
            action=action,
            kind=intent.kind,
            subject_id=intent.subject_id,
            requester_id=requester_id,
            identity_id=identity.id,
            payload=intent.payload,
        )

    def handler_for(self, requester_id: str | None) -> ResumeHandler:
        async def resume(intent: Intent, identity: VerifiedIdentity) -> ResumedAction:
            return await self.dispatch(intent, identity, requester_id)

        return resume
