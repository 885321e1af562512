from fastapi import APIRouter, Depends

from medaccess.api.deps import require_api_token
from medaccess.api.routes import access, authorizations, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(
    authorizations.router,
    prefix="/authorizations",
    tags=["authorizations"],
    dependencies=[Depends(require_api_token)],
)
api_router.include_router(
    access.router,
    prefix="/access",
    tags=["access"],
    dependencies=[Depends(require_api_token)],
)
