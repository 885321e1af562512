from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from medaccess.core.settings import get_settings

logger = logging.getLogger(__name__)


def grant_key(requester_id: str, patient_id: str) -> str:
    return f"access_grant:{requester_id}:{patient_id}"


class AccessGrantRegistry:
    """Remembers which care staff a patient has approved by phone.

    Grants expire after ``access_grant_ttl_seconds``.
    """

    def __init__(self, redis_client, ttl_seconds: int | None = None) -> None:
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else get_settings().access_grant_ttl_seconds

    async def grant(self, requester_id: str, patient_id: str) -> None:
        payload = {"granted_at": datetime.now(timezone.utc).isoformat()}
        await self.redis.setex(
            grant_key(str(requester_id), str(patient_id)),
            self.ttl_seconds,
            json.dumps(payload),
        )
        logger.info("Access to patient %s granted to %s", patient_id, requester_id)

    async def revoke(self, requester_id: str, patient_id: str) -> None:
        await self.redis.delete(grant_key(str(requester_id), str(patient_id)))

    async def is_authorized(self, requester_id: str, patient_id: str) -> bool:
        stored = await self.redis.get(grant_key(str(requester_id), str(patient_id)))
        return stored is not None

    async def authorized_patient_ids(self, requester_id: str) -> list[str]:
        prefix = grant_key(str(requester_id), "")
        patient_ids = []
        async for key in self.redis.scan_iter(match=f"{prefix}*"):
            patient_ids.append(key[len(prefix):])
        return sorted(patient_ids)
