import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Ledger sync queue ("rq" in production, "thread" for local runs)
    LEDGER_SYNC_BACKEND: str = "rq"
    LEDGER_SYNC_QUEUE: str = "ledger-sync"
    LEDGER_SYNC_MAX_WORKERS: int = 4
    LEDGER_SYNC_JOB_TIMEOUT: int = 120

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_PRO_ID: Optional[str] = None
    STRIPE_PRICE_ENTERPRISE_ID: Optional[str] = None
    STRIPE_TRIAL_DAYS: int = 7

    # Plans
    DEFAULT_PAID_PLAN: str = "pro"
    FREE_ARTICLES_PER_MONTH: int = 2

    # App URLs
    APP_URL: str = "http://localhost:3000"

    # Google Sheets ledger
    GOOGLE_CREDENTIALS_PATH: Optional[str] = None
    GOOGLE_SHEETS_CUSTOMER_CONFIG_ID: Optional[str] = None
    GOOGLE_SHEETS_ARTICLES_ID: Optional[str] = None
    LEDGER_MAIN_SHEET: str = "Main"
    LEDGER_CUSTOMERS_SHEET: str = "Customers"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("articleflow")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "GOOGLE_CREDENTIALS_PATH",
        "GOOGLE_SHEETS_CUSTOMER_CONFIG_ID",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
