from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    internal_api_token: str = Field(
        default="dev_internal_token_change_me",
        alias="INTERNAL_API_TOKEN",
    )
    internal_api_allowlist: str = Field(
        default="127.0.0.1/32,::1/128",
        alias="INTERNAL_API_ALLOWLIST",
    )
    internal_api_trusted_proxies: str = Field(default="", alias="INTERNAL_API_TRUSTED_PROXIES")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./coupon_engine.db",
        alias="DATABASE_URL",
    )

    qr_signing_secret: str = Field(default="dev_qr_secret_change_me", alias="QR_SIGNING_SECRET")
    code_prefix: str = Field(default="RK", alias="CODE_PREFIX")
    code_generation_max_attempts: int = Field(default=10, alias="CODE_GENERATION_MAX_ATTEMPTS")

    referral_completion_threshold: Decimal = Field(
        default=Decimal("5000"),
        alias="REFERRAL_COMPLETION_THRESHOLD",
    )
    referral_referrer_reward: Decimal = Field(default=Decimal("500"), alias="REFERRAL_REFERRER_REWARD")
    referral_referred_reward: Decimal = Field(default=Decimal("300"), alias="REFERRAL_REFERRED_REWARD")
    referral_referrer_min_purchase: Decimal = Field(
        default=Decimal("10000"),
        alias="REFERRAL_REFERRER_MIN_PURCHASE",
    )
    referral_referred_min_purchase: Decimal = Field(
        default=Decimal("5000"),
        alias="REFERRAL_REFERRED_MIN_PURCHASE",
    )
    referral_reward_valid_days: int = Field(default=60, alias="REFERRAL_REWARD_VALID_DAYS")
    referral_expiry_days: int = Field(default=90, alias="REFERRAL_EXPIRY_DAYS")

    customer_directory_url: str = Field(default="", alias="CUSTOMER_DIRECTORY_URL")
    store_directory_url: str = Field(default="", alias="STORE_DIRECTORY_URL")
    purchase_ledger_url: str = Field(default="", alias="PURCHASE_LEDGER_URL")
    notification_webhook_url: str = Field(default="", alias="NOTIFICATION_WEBHOOK_URL")
    collaborator_timeout_seconds: float = Field(default=5.0, alias="COLLABORATOR_TIMEOUT_SECONDS")

    celery_broker_url: str = Field(default="redis://localhost:6379/0", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(
        default="redis://localhost:6379/1",
        alias="CELERY_RESULT_BACKEND",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
