import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medaccess.api.router import api_router
from medaccess.core.settings import Settings, get_settings
from medaccess.services.access_grants import AccessGrantRegistry
from medaccess.services.broker_registry import BrokerRegistry
from medaccess.services.intent_dispatch import IntentDispatcher
from medaccess.services.local_otp import LocalOtpChannel
from medaccess.services.otp_channel import HttpOtpChannel, OtpChannel
from medaccess.services.redis_client import create_redis
from medaccess.services.sms_client import SmsClient
from medaccess.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def build_otp_channel(settings: Settings, redis_client, directory: UserDirectory | None = None) -> OtpChannel:
    if settings.otp_channel_mode == "http":
        return HttpOtpChannel(
            base_url=settings.otp_base_url,
            send_path=settings.otp_send_path,
            verify_path=settings.otp_verify_path,
            timeout=settings.otp_timeout_seconds,
        )
    if settings.otp_channel_mode != "local":
        raise ValueError(f"Unknown OTP channel mode: {settings.otp_channel_mode}")
    if directory is None:
        directory = UserDirectory.from_file(
            settings.user_directory_path,
            country_code=settings.phone_country_code,
            min_digits=settings.phone_min_digits,
        )
    return LocalOtpChannel(redis_client, directory, sms_client=SmsClient(settings=settings), settings=settings)


def create_app(
    settings: Settings | None = None,
    *,
    otp_channel: OtpChannel | None = None,
    redis_client=None,
    directory: UserDirectory | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        redis = redis_client if redis_client is not None else create_redis(settings)
        channel = otp_channel or build_otp_channel(settings, redis, directory)
        grants = AccessGrantRegistry(redis, ttl_seconds=settings.access_grant_ttl_seconds)
        app.state.grants = grants
        app.state.dispatcher = IntentDispatcher(grants)
        app.state.brokers = BrokerRegistry(
            channel,
            cooldown_seconds=settings.resend_cooldown_seconds,
            min_digits=settings.phone_min_digits,
            country_code=settings.phone_country_code,
        )
        logger.info("OTP channel ready in %s mode", settings.otp_channel_mode)
        yield
        if redis_client is None:
            await redis.aclose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings

    origins = [o.strip() for o in settings.allow_origins.split(",") if o.strip()]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
