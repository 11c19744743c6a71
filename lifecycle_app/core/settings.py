import os
from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

from .url_parser import parser

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "PROPERTY MARKETPLACE BOOKING AND PAYMENT LIFECYCLE"
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL", "sqlite+aiosqlite:///./marketplace_lifecycle.db"
    )
    DATABASE_ECHO: bool = False

    RABBITMQ_URL: str = os.getenv("RABBITMQ_URL", "")
    RABBITMQ_MAIN_EXCHANGE: str = "lifecycle_events"
    RABBITMQ_DLX: str = "dead_letter_exchange"
    RABBITMQ_DLX_QUEUE: str = "dead_letter_queue"

    CELERY_REDIS_URL: str = os.getenv("CELERY_REDIS_URL", "redis://localhost:6379/0")

    JWT_SECRET_KEY: str | None = os.getenv("JWT_SECRET_KEY")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")

    MTN_MOMO_BASE_URL: str = "https://proxy.momoapi.mtn.com"
    MTN_MOMO_SUBSCRIPTION_KEY: str | None = os.getenv("MTN_MOMO_SUBSCRIPTION_KEY")
    MTN_MOMO_API_TOKEN: str | None = os.getenv("MTN_MOMO_API_TOKEN")
    MTN_MOMO_TARGET_ENVIRONMENT: str = os.getenv(
        "MTN_MOMO_TARGET_ENVIRONMENT", "mtnuganda"
    )
    MTN_MOMO_CALLBACK_SECRET: str | None = os.getenv("MTN_MOMO_CALLBACK_SECRET")

    AIRTEL_MONEY_BASE_URL: str = "https://openapi.airtel.africa"
    AIRTEL_MONEY_API_TOKEN: str | None = os.getenv("AIRTEL_MONEY_API_TOKEN")
    AIRTEL_MONEY_COUNTRY: str = "UG"
    AIRTEL_MONEY_CALLBACK_SECRET: str | None = os.getenv(
        "AIRTEL_MONEY_CALLBACK_SECRET"
    )

    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    FLUTTERWAVE_SECRET_KEY: str | None = os.getenv("FLUTTERWAVE_SECRET_KEY")
    FLUTTERWAVE_WEBHOOK_SECRET: str | None = os.getenv("FLUTTERWAVE_WEBHOOK_SECRET")
    REDIRECT_URL: str | None = os.getenv("REDIRECT_URL")

    CASH_DESK_CALLBACK_SECRET: str | None = os.getenv("CASH_DESK_CALLBACK_SECRET")

    DEFAULT_CURRENCY: str = "UGX"
    PROVIDER_SUBMIT_TIMEOUT_SECONDS: float = 15.0
    CALLBACK_LOCK_WAIT_SECONDS: float = 5.0
    RECONCILE_AFTER_MINUTES: int = 30
    AUTO_COMPLETE_STAYS: bool = True

    ALLOWED_HOSTS_RAW: str = os.getenv("ALLOWED_HOSTS", "")

    @property
    def ALLOWED_HOSTS(self) -> List[str]:
        return parser.parse_url_list(self.ALLOWED_HOSTS_RAW, "ALLOWED_HOSTS")

    class Config:
        env_file = ".env"
        extra = "ignore"
        case_sensitive = False


settings = Settings()
