from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
    return bool(v)


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'lanka_pos'
    POSTGRES_PASSWORD: str = 'lanka_pos'
    POSTGRES_DB: str = 'lanka_pos'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the POSTGRES_* settings (e.g. sqlite:// for tests)

    # Redis settings
    REDIS_HOST: str = 'redis'
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # JWT settings
    APP_SECRET_STRING: str = 'change-me-lanka-pos-secret-key-2024'
    ALGORITHM: str = 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12  # one shift
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Default administrator created at startup
    ADMIN_USERNAME: str = 'admin'
    ADMIN_EMAIL: str = 'admin@lankapos.lk'
    ADMIN_PASSWORD: Optional[str] = None

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Restaurant identity printed on receipts
    RESTAURANT_NAME: str = 'Lanka POS Restaurant'
    RESTAURANT_ADDRESS: str = 'No. 1, Galle Road, Colombo 03'
    RESTAURANT_PHONE: str = 'Tel: +94 11 234 5678'
    RESTAURANT_EMAIL: str = 'Email: info@lankapos.lk'
    RESTAURANT_VAT_NUMBER: str = 'VAT No: 123456789-7000'

    # VAT
    VAT_RATE: float = 0.15
    VAT_CACHE_SECONDS: int = 300

    # Email settings
    EMAIL_SMTP_SERVER: str = 'smtp.gmail.com'
    EMAIL_SMTP_PORT: int = 587
    EMAIL_USE_TLS: bool = True
    EMAIL_USERNAME: str = ''
    EMAIL_PASSWORD: str = ''
    EMAIL_FROM: str = ''
    EMAIL_FROM_NAME: str = 'Lanka POS'

    # SMS settings
    SMS_PROVIDER: str = 'simulated'  # simulated | twilio
    SMS_SENDER_ID: str = 'LANKAPOS'
    TWILIO_ACCOUNT_SID: str = ''
    TWILIO_AUTH_TOKEN: str = ''
    TWILIO_PHONE_NUMBER: str = ''

    # Receipt delivery
    RECEIPT_MAX_RETRIES: int = 3

    # Payments
    CARD_GATEWAY: str = 'simulated'  # simulated | stripe
    STRIPE_SECRET_KEY: str = ''
    STRIPE_WEBHOOK_SECRET: str = 'whsec_local_card_secret'
    MOBILE_WEBHOOK_SECRET: str = 'local_wallet_secret'
    MOBILE_PAYMENT_SUCCESS_RATE: float = 0.95
    CARD_SESSION_TIMEOUT_MINUTES: int = 15
    MOBILE_SESSION_TIMEOUT_MINUTES: int = 15
    CURRENCY: str = 'LKR'

    # Offline sync
    SYNC_MAX_ATTEMPTS: int = 5
    SYNC_MAX_BACKOFF_SECONDS: int = 300
    SYNC_RETENTION_DAYS: int = 7

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)

    @field_validator("EMAIL_USE_TLS", mode="before")
    @classmethod
    def parse_email_tls(cls, v):
        return _parse_bool(v)

    @field_validator("VAT_RATE", "MOBILE_PAYMENT_SUCCESS_RATE")
    @classmethod
    def validate_fraction(cls, v):
        if v < 0 or v > 1:
            raise ValueError("Rate must be between 0 and 1")
        return v


settings = Settings()
