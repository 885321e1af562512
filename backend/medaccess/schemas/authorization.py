from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class IntentKind(str, Enum):
    VIEW_RECORD = "view_record"
    EDIT_RECORD = "edit_record"
    DELETE_RECORD = "delete_record"
    CREATE_SUB_RECORD = "create_sub_record"
    VIEW_SUB_RECORD_DETAIL = "view_sub_record_detail"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    DOCTOR = "PERSONNEL_SOIGNANT"
    PATIENT = "PATIENT"


class ChallengeStep(str, Enum):
    PHONE_ENTRY = "phone_entry"
    CODE_ENTRY = "code_entry"
    RESOLVED = "resolved"


class BrokerOutcome(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    AUTHORIZED = "authorized"
    DENIED = "denied"
    DISCARDED = "discarded"


class ChallengeErrorCode(str, Enum):
    INVALID_PHONE = "invalid_phone"
    SEND_FAILED = "send_failed"
    INCOMPLETE_CODE = "incomplete_code"
    INCORRECT_CODE = "incorrect_code"
    ACCESS_DENIED = "access_denied"


class Intent(BaseModel):
    """A sensitive operation suspended until the subject confirms by phone."""

    kind: IntentKind
    subject_id: str | int
    payload: dict[str, Any] | None = None

    model_config = ConfigDict(frozen=True)


class VerifiedIdentity(BaseModel):
    """Identity returned by a successful code verification.

    Accepts both our field names and the records backend's native ones
    (``idUtilisateur``, ``typeUtilisateur``...). Unknown fields are kept.
    """

    id: str = Field(validation_alias=AliasChoices("id", "idUtilisateur"))
    role: str = Field(validation_alias=AliasChoices("role", "typeUtilisateur"))
    phone: str | None = Field(
        default=None,
        validation_alias=AliasChoices("phone", "telephoneUtilisateur"),
    )
    last_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("last_name", "nomUtilisateur"),
    )
    first_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("first_name", "prenomUtilisateur"),
    )

    model_config = ConfigDict(extra="allow", frozen=True)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    def has_role(self, role: UserRole) -> bool:
        return self.role.upper() == role.value


class ChallengeError(BaseModel):
    code: ChallengeErrorCode
    message: str

    model_config = ConfigDict(frozen=True)


class ResumedAction(BaseModel):
    """What the hosting UI should open once an intent has been replayed."""

    action: str
    kind: IntentKind
    subject_id: str | int
    requester_id: str | None = None
    identity_id: str
    payload: dict[str, Any] | None = None


class ChallengeView(BaseModel):
    """Render state of the broker for the hosting UI."""

    outcome: BrokerOutcome
    step: ChallengeStep | None = None
    challenge_id: str | None = None
    intent: Intent | None = None
    phone_number: str = ""
    attempt_code: list[str] = Field(default_factory=lambda: ["", "", "", ""])
    focus_index: int = 0
    cooldown_remaining_seconds: int = 0
    can_resend: bool = False
    is_sending: bool = False
    is_verifying: bool = False
    last_error: ChallengeError | None = None
    completed_action: ResumedAction | None = None


class AuthorizationRequest(BaseModel):
    kind: IntentKind
    subject_id: str | int
    requester_id: str
    payload: dict[str, Any] | None = None
    seed_phone: str | None = None


class PhoneSubmit(BaseModel):
    phone: str


class DigitSubmit(BaseModel):
    index: int = Field(ge=0, le=3)
    value: str = Field(max_length=8)


class BackspaceSubmit(BaseModel):
    index: int = Field(ge=0, le=3)


class PasteSubmit(BaseModel):
    text: str = Field(max_length=64)
