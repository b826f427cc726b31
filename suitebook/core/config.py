from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    ENV: str = "local"
    APP_NAME: str = "Suitebook Payments API"
    HOTEL_NAME: str = "Suitebook Suites & Apartments"  # used in guest e-mails
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    DATABASE_URL: str = "sqlite+aiosqlite:///./suitebook.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; the async engine expects postgresql+asyncpg://."""
        if v and v.startswith("postgres://"):
            return "postgresql+asyncpg://" + v[11:]
        if v and v.startswith("postgresql://"):
            return "postgresql+asyncpg://" + v[13:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "payments@suitebook.local"
    ADMIN_EMAIL: str = ""  # receives payment notifications; falls back to SMTP_FROM

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    PUBLIC_CLIENT_URL: str = "http://localhost:3039"  # browser redirect target after verify-payment
    OPS_API_TOKEN: str = ""  # bearer token for /ops and /admin endpoints

    # Payment logs (append-only JSON lines, masked)
    PAYMENT_LOG_DIR: str = "./storage/logs"

    PAYMENT_CURRENCY: str = "NGN"
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    RECONCILE_PENDING_AFTER_MINUTES: int = 30

    # Paystack
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_PUBLIC_KEY: str = ""
    PAYSTACK_WEBHOOK_SECRET: str = ""  # defaults to PAYSTACK_SECRET_KEY when empty

    # Flutterwave
    FLUTTERWAVE_BASE_URL: str = "https://api.flutterwave.com/v3"
    FLUTTERWAVE_SECRET_KEY: str = ""
    FLUTTERWAVE_PUBLIC_KEY: str = ""
    FLUTTERWAVE_ENCRYPTION_KEY: str = ""
    FLUTTERWAVE_WEBHOOK_HASH: str = Field(
        default="",
        validation_alias=AliasChoices("FLUTTERWAVE_WEBHOOK_HASH", "FLUTTERWAVE_SECRET_HASH"),
    )

    def missing_gateway_secrets(self) -> list[str]:
        required = {
            "PAYSTACK_SECRET_KEY": self.PAYSTACK_SECRET_KEY,
            "FLUTTERWAVE_SECRET_KEY": self.FLUTTERWAVE_SECRET_KEY,
            "FLUTTERWAVE_WEBHOOK_HASH": self.FLUTTERWAVE_WEBHOOK_HASH,
        }
        return [name for name, value in required.items() if not (value or "").strip()]

    def require_gateway_secrets(self) -> None:
        """Fail fast at startup instead of on the first payment."""
        missing = self.missing_gateway_secrets()
        if missing:
            raise RuntimeError(f"Payment gateways are not configured (missing env vars: {', '.join(missing)})")


settings = Settings()
