import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Session auth (HS256 JWT issued by the frontend session layer)
    AUTH_JWT_SECRET: Optional[str] = None
    AUTH_JWT_AUDIENCE: Optional[str] = None
    ALLOW_HEADER_AUTH: bool = True  # X-User-Id fallback, disabled in production

    # Operators bypass billing checks entirely
    OPERATOR_EMAILS: str = ""  # comma-separated

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_PERSONAL_MONTH: str = "price_personal_monthly"
    STRIPE_PRICE_PERSONAL_YEAR: str = "price_personal_yearly"
    STRIPE_PRICE_STARTER_MONTH: str = "price_starter_monthly"
    STRIPE_PRICE_STARTER_YEAR: str = "price_starter_yearly"
    STRIPE_PRICE_BUSINESS_MONTH: str = "price_business_monthly"
    STRIPE_PRICE_BUSINESS_YEAR: str = "price_business_yearly"
    STRIPE_PRICE_ENTERPRISE_MONTH: str = "price_enterprise_monthly"
    STRIPE_PRICE_ENTERPRISE_YEAR: str = "price_enterprise_yearly"

    # App URLs (checkout success/cancel redirects)
    APP_BASE_URL: str = "http://localhost:3000"

    # Billing maintenance
    TRIAL_GRACE_DAYS: int = 7
    WEBHOOK_DRAIN_TIMEOUT_SECONDS: float = 25.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def operator_emails(self) -> List[str]:
        return [e.strip().lower() for e in self.OPERATOR_EMAILS.split(",") if e.strip()]

    def header_auth_allowed(self) -> bool:
        return self.ALLOW_HEADER_AUTH and self.ENV.lower() != "production"

settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("snsshare")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_JWT_SECRET",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
