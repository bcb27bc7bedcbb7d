from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # App settings
    PROJECT_NAME: str = "SpendBox"
    API_PREFIX: str = "/api"
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    FRONTEND_URL: str = Field(default="http://localhost:3000")
    PORT: int = Field(default=5001)

    # DynamoDB
    DYNAMO_REGION: str = Field(default="eu-west-1")
    DYNAMO_ENDPOINT_URL: Optional[str] = Field(default=None)
    DYNAMO_USERS_TABLE: str = Field(
        default="spendbox-users", validation_alias=AliasChoices("DYNAMO_USERS_TABLE", "DYNAMO_TABLE_USERS")
    )
    DYNAMO_EXPENSES_TABLE: str = Field(
        default="spendbox-expenses", validation_alias=AliasChoices("DYNAMO_EXPENSES_TABLE", "DYNAMO_TABLE_EXPENSES")
    )
    DYNAMO_CREATE_TABLES: bool = Field(default=False)

    # JWT Authentication
    JWT_SECRET_KEY: str = Field(
        default="change-me-in-production", validation_alias=AliasChoices("JWT_SECRET", "JWT_SECRET_KEY")
    )
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24 * 30  # 30 days
    BCRYPT_ROUNDS: int = Field(default=12, ge=4)
    PASSWORD_RESET_EXPIRE_MINUTES: int = 10

    # Subscription plans
    FREE_TRANSACTION_LIMIT: int = 50
    PREMIUM_TRANSACTION_LIMIT: int = 999999
    PREMIUM_PERIOD_DAYS: int = 30

    # AI services
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    OPENAI_MODEL: str = "gpt-3.5-turbo"
    OPENAI_TRANSCRIPTION_MODEL: str = "whisper-1"
    AI_TIMEOUT_SECONDS: float = 20.0
    TESSERACT_LANG: str = "eng"

    # Plaid
    PLAID_CLIENT_ID: Optional[str] = Field(default=None)
    PLAID_SECRET: Optional[str] = Field(default=None)
    PLAID_ENV: str = Field(default="sandbox")
    PLAID_SYNC_DAYS: int = 30

    # SMTP (emails are skipped when SMTP_HOST is empty)
    SMTP_HOST: str = Field(default="")
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = Field(default=None)
    SMTP_PASSWORD: Optional[str] = Field(default=None)
    SMTP_FROM: str = Field(default="no-reply@spendbox.local")

    # Rate limiting, requests per window per client address
    AUTH_RATE_LIMIT: int = 20
    AUTH_RATE_WINDOW_SECONDS: int = 15 * 60
    UPLOAD_RATE_LIMIT: int = 30
    UPLOAD_RATE_WINDOW_SECONDS: int = 60
    API_RATE_LIMIT: int = 300
    API_RATE_WINDOW_SECONDS: int = 15 * 60

    # Sockets that have not joined a room within this many seconds are closed
    WS_JOIN_TIMEOUT_SECONDS: float = 30

    # Background jobs
    SCHEDULER_ENABLED: bool = Field(default=True)
    RECURRING_JOB_HOUR: int = 0
    RECURRING_JOB_MINUTE: int = 5

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, populate_by_name=True, extra="ignore")


settings = Settings()
