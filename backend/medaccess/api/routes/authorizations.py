from fastapi import APIRouter, Depends

from medaccess.api.deps import (
    get_broker_registry,
    get_dispatcher,
    get_session_broker,
    get_session_id,
)
from medaccess.schemas.authorization import (
    AuthorizationRequest,
    BackspaceSubmit,
    BrokerOutcome,
    ChallengeView,
    DigitSubmit,
    Intent,
    PasteSubmit,
    PhoneSubmit,
)
from medaccess.services.broker import AuthorizationBroker
from medaccess.services.broker_registry import BrokerRegistry
from medaccess.services.intent_dispatch import IntentDispatcher

router = APIRouter()


@router.post("", response_model=ChallengeView, status_code=201)
async def request_authorization(
    payload: AuthorizationRequest,
    session_id: str = Depends(get_session_id),
    registry: BrokerRegistry = Depends(get_broker_registry),
    dispatcher: IntentDispatcher = Depends(get_dispatcher),
) -> ChallengeView:
    """Park an intent and open a phone challenge for it.

    Any challenge already open for the session is abandoned.
    """
    broker = registry.get_or_create(session_id)
    intent = Intent(kind=payload.kind, subject_id=payload.subject_id, payload=payload.payload)
    return broker.request_authorization(
        intent,
        dispatcher.handler_for(payload.requester_id),
        seed_phone=payload.seed_phone,
    )


@router.get("/current", response_model=ChallengeView)
async def current_authorization(
    session_id: str = Depends(get_session_id),
    registry: BrokerRegistry = Depends(get_broker_registry),
) -> ChallengeView:
    broker = registry.get(session_id)
    if broker is None:
        return ChallengeView(outcome=BrokerOutcome.IDLE)
    return broker.snapshot()


@router.post("/phone", response_model=ChallengeView)
async def submit_phone(
    payload: PhoneSubmit,
    broker: AuthorizationBroker = Depends(get_session_broker),
) -> ChallengeView:
    broker.submit_phone(payload.phone)
    return await broker.send_code()


@router.post("/send", response_model=ChallengeView)
async def send_code(broker: AuthorizationBroker = Depends(get_session_broker)) -> ChallengeView:
    return await broker.send_code()


@router.post("/digits", response_model=ChallengeView)
async def submit_digit(
    payload: DigitSubmit,
    broker: AuthorizationBroker = Depends(get_session_broker),
) -> ChallengeView:
    return broker.submit_digit(payload.index, payload.value)


@router.post("/backspace", response_model=ChallengeView)
async def backspace(
    payload: BackspaceSubmit,
    broker: AuthorizationBroker = Depends(get_session_broker),
) -> ChallengeView:
    return broker.backspace(payload.index)


@router.post("/paste", response_model=ChallengeView)
async def submit_paste(
    payload: PasteSubmit,
    broker: AuthorizationBroker = Depends(get_session_broker),
) -> ChallengeView:
    return broker.submit_paste(payload.text)


@router.post("/verify", response_model=ChallengeView)
async def verify(broker: AuthorizationBroker = Depends(get_session_broker)) -> ChallengeView:
    return await broker.verify()


@router.post("/resend", response_model=ChallengeView)
async def resend(broker: AuthorizationBroker = Depends(get_session_broker)) -> ChallengeView:
    return await broker.resend()


@router.post("/back", response_model=ChallengeView)
async def back(broker: AuthorizationBroker = Depends(get_session_broker)) -> ChallengeView:
    return broker.back()


@router.post("/cancel", response_model=ChallengeView)
async def cancel(broker: AuthorizationBroker = Depends(get_session_broker)) -> ChallengeView:
    return broker.cancel()
