from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "medaccess"
    api_prefix: str = "/api"
    allow_origins: str = "http://localhost:5173"
    api_token: str | None = None
    log_level: str = "INFO"

    # "local" issues codes from this service; "http" delegates to the records backend.
    otp_channel_mode: str = "local"
    otp_base_url: str = "http://localhost:5000/api"
    otp_send_path: str = "/auth/request-pin"
    otp_verify_path: str = "/auth/verify-pin"
    otp_timeout_seconds: float = 15.0

    phone_country_code: str = "225"
    phone_min_digits: int = 10
    resend_cooldown_seconds: int = 60

    otp_ttl_seconds: int = 900
    otp_rate_limit: int = 5
    otp_rate_window_seconds: int = 600
    otp_max_attempts: int = 5

    messaging_mode: str = "mock"

    # Telnyx (SMS)
    telnyx_api_key: str | None = None
    telnyx_messaging_profile_id: str | None = None
    telnyx_phone_number: str | None = None
    telnyx_base_url: str = "https://api.telnyx.com/v2"

    redis_url: str = "redis://localhost:6379/0"

    user_directory_path: str = "data/users.json"
    access_grant_ttl_seconds: int = 86400

    model_config = SettingsConfigDict(
        env_file=("../.env", ".env"),
        env_file_encoding="utf-8",
        env_prefix="MEDACCESS_",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
