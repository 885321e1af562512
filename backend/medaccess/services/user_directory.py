from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from medaccess.schemas.authorization import VerifiedIdentity
from medaccess.services.phone import normalize_phone

logger = logging.getLogger(__name__)


class UserDirectoryError(ValueError):
    pass


@dataclass(frozen=True)
class DirectoryUser:
    id: str
    role: str
    phone: str
    first_name: str | None = None
    last_name: str | None = None

    def to_identity(self) -> VerifiedIdentity:
        return VerifiedIdentity(
            id=self.id,
            role=self.role,
            phone=self.phone,
            first_name=self.first_name,
            last_name=self.last_name,
        )


class UserDirectory:
    """Read-only lookup of the users who can receive verification codes.

    Built once at startup from a fixture file and handed to the services that
    need it.
    """

    def __init__(
        self,
        users: Iterable[DirectoryUser] = (),
        country_code: str | None = None,
        min_digits: int | None = None,
    ) -> None:
        self.country_code = country_code
        self.min_digits = min_digits
        self._by_id: dict[str, DirectoryUser] = {}
        self._by_phone: dict[str, DirectoryUser] = {}
        for user in users:
            self._by_id[user.id] = user
            self._by_phone[user.phone] = user

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def from_records(
        cls,
        records: Iterable[dict[str, Any]],
        country_code: str | None = None,
        min_digits: int | None = None,
    ) -> "UserDirectory":
        users = []
        for record in records:
            phone = normalize_phone(str(record.get("phone") or ""), country_code, min_digits)
            user_id = record.get("id")
            role = record.get("role")
            if user_id is None or not role or not phone:
                raise UserDirectoryError(f"Incomplete directory record: {record!r}")
            users.append(
                DirectoryUser(
                    id=str(user_id),
                    role=str(role).upper(),
                    phone=phone,
                    first_name=record.get("first_name"),
                    last_name=record.get("last_name"),
                )
            )
        return cls(users, country_code, min_digits)

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        country_code: str | None = None,
        min_digits: int | None = None,
    ) -> "UserDirectory":
        path = Path(path)
        if not path.exists():
            logger.warning("User directory %s not found; starting empty", path)
            return cls(country_code=country_code, min_digits=min_digits)
        data = json.loads(path.read_text(encoding="utf-8"))
        records = data.get("users", []) if isinstance(data, dict) else data
        directory = cls.from_records(records, country_code, min_digits)
        logger.info("Loaded %s users from %s", len(directory), path)
        return directory

    def get(self, user_id: str) -> DirectoryUser | None:
        return self._by_id.get(str(user_id))

    def find_by_phone(self, phone: str) -> DirectoryUser | None:
        return self._by_phone.get(normalize_phone(phone, self.country_code, self.min_digits))
