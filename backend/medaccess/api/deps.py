from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from medaccess.core.settings import Settings
from medaccess.services.access_grants import AccessGrantRegistry
from medaccess.services.broker import AuthorizationBroker
from medaccess.services.broker_registry import BrokerRegistry
from medaccess.services.intent_dispatch import IntentDispatcher

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_api_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_api_token: str | None = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    token = settings.api_token
    if not token:
        return

    provided = None
    if credentials and credentials.scheme.lower() == "bearer":
        provided = credentials.credentials
    elif x_api_token:
        provided = x_api_token

    if not provided or provided != token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token",
        )


def get_broker_registry(request: Request) -> BrokerRegistry:
    return request.app.state.brokers


def get_dispatcher(request: Request) -> IntentDispatcher:
    return request.app.state.dispatcher


def get_access_grants(request: Request) -> AccessGrantRegistry:
    return request.app.state.grants


def get_session_id(x_session_id: str = Header(..., min_length=1, max_length=128)) -> str:
    return x_session_id


async def get_session_broker(
    session_id: str = Depends(get_session_id),
    registry: BrokerRegistry = Depends(get_broker_registry),
) -> AuthorizationBroker:
    broker = registry.get(session_id)
    if broker is None or broker.challenge is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No authorization has been requested for this session.",
        )
    return broker
