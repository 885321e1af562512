from pydantic import BaseModel


class AuthorizedPatientList(BaseModel):
    requester_id: str
    patient_ids: list[str]
    total: int


class AccessCheck(BaseModel):
    requester_id: str
    patient_id: str
    authorized: bool
