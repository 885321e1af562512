from fastapi import APIRouter, Depends

from medaccess.api.deps import get_access_grants
from medaccess.schemas.access import AccessCheck, AuthorizedPatientList
from medaccess.services.access_grants import AccessGrantRegistry

router = APIRouter()


@router.get("/{requester_id}/patients", response_model=AuthorizedPatientList)
async def list_authorized_patients(
    requester_id: str,
    grants: AccessGrantRegistry = Depends(get_access_grants),
) -> AuthorizedPatientList:
    """Patients who confirmed by phone and whose grant has not expired."""
    patient_ids = await grants.authorized_patient_ids(requester_id)
    return AuthorizedPatientList(
        requester_id=requester_id,
        patient_ids=patient_ids,
        total=len(patient_ids),
    )


@router.get("/{requester_id}/patients/{patient_id}", response_model=AccessCheck)
async def check_access(
    requester_id: str,
    patient_id: str,
    grants: AccessGrantRegistry = Depends(get_access_grants),
) -> AccessCheck:
    authorized = await grants.is_authorized(requester_id, patient_id)
    return AccessCheck(requester_id=requester_id, patient_id=patient_id, authorized=authorized)


@router.delete("/{requester_id}/patients/{patient_id}", status_code=204)
async def revoke_access(
    requester_id: str,
    patient_id: str,
    grants: AccessGrantRegistry = Depends(get_access_grants),
) -> None:
    await grants.revoke(requester_id, patient_id)
