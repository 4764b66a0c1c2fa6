from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application Config
    PROJECT_NAME: str = Field(default="Lifeline API")
    PROJECT_DESCRIPTION: str = Field(
        default="Emergency blood request batch notification service"
    )
    VERSION: str = Field(default="1.0.0")
    API_PREFIX: str = Field(default="/api")
    DOCS_URL: str = Field(default="/docs")

    # Environment
    ENVIRONMENT: str = Field(default="development")

    # Database
    DATABASE_URL: str = Field(default="")
    DATABASE_POOL_SIZE: int = Field(default=5)
    DATABASE_MAX_OVERFLOW: int = Field(default=10)
    DATABASE_BUSY_TIMEOUT_SECONDS: int = Field(default=30)

    # Development database fallback
    DEV_DATABASE_URL: str = Field(default="sqlite+aiosqlite:///./lifeline.sqlite3")

    # CORS Configuration
    BACKEND_CORS_ORIGINS: list[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost",
        ]
    )

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=False)
    LOG_DIR: str = Field(default="logs")

    # Batch scheduler
    SCHEDULER_ENABLED: bool = Field(default=True)
    BATCH_SCHEDULER_INTERVAL_SECONDS: int = Field(default=60, ge=1)
    BATCH_SCHEDULER_STARTUP_DELAY_SECONDS: int = Field(default=10, ge=0)

    # Request defaults
    DEFAULT_BATCH_SIZE: int = Field(default=1, ge=1)
    DEFAULT_RESPONSE_WINDOW_MINUTES: int = Field(default=2, ge=1)
    DONATION_COOLDOWN_MONTHS: int = Field(default=3, ge=0)

    # Dispatch
    DISPATCH_MAX_CONCURRENCY: int = Field(default=10, ge=1)
    DISPATCH_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    DISPATCH_RETRY_BACKOFF_SECONDS: float = Field(default=2.0, ge=0)

    # Donor response links
    RESPONSE_BASE_URL: str = Field(default="http://localhost:5173")

    # SMS Configuration
    SMS_PROVIDER: str = Field(default="console")  # console | twilio
    TWILIO_ACCOUNT_SID: str = Field(default="")
    TWILIO_AUTH_TOKEN: str = Field(default="")
    TWILIO_PHONE_NUMBER: str = Field(default="")
    TWILIO_API_BASE_URL: str = Field(default="https://api.twilio.com/2010-04-01")
    SMS_TIMEOUT_SECONDS: float = Field(default=10.0)

    # SMS Templates
    SMS_TEMPLATE_HIGH_PRIORITY: str = Field(
        default=(
            "URGENT: {urgency}. {quantity} unit(s) of {bloodType} blood needed at "
            "{hospital}. {donorName}, your donation can save a life. "
            "Respond: {responseUrl}"
        )
    )
    SMS_TEMPLATE_NORMAL_PRIORITY: str = Field(
        default=(
            "Blood donation request from {hospital}: {quantity} unit(s) of "
            "{bloodType} ({urgency}). {donorName}, can you help? "
            "Respond: {responseUrl}"
        )
    )

    # Pydantic v2 config
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def model_post_init(self, __context) -> None:
        """Post-initialization validation and setup"""
        if isinstance(self.BACKEND_CORS_ORIGINS, str):
            self.BACKEND_CORS_ORIGINS = [
                origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",")
            ]

        self.SMS_PROVIDER = self.SMS_PROVIDER.strip().lower()
        if self.SMS_PROVIDER not in ("console", "twilio"):
            raise ValueError(f"Unsupported SMS_PROVIDER: {self.SMS_PROVIDER}")

        if self.SMS_PROVIDER == "twilio" and not (
            self.TWILIO_ACCOUNT_SID
            and self.TWILIO_AUTH_TOKEN
            and self.TWILIO_PHONE_NUMBER
        ):
            raise ValueError(
                "TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_PHONE_NUMBER "
                "must be set when SMS_PROVIDER is 'twilio'"
            )

        if self.ENVIRONMENT.lower() == "production":
            # In production, require DATABASE_URL to be explicitly set
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
        else:
            # Elsewhere fall back to the local SQLite database
            if not self.DATABASE_URL:
                self.DATABASE_URL = self.DEV_DATABASE_URL


# Instantiate settings
settings = Settings()
