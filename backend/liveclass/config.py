from urllib.parse import urlparse

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _cors_origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    parsed = urlparse(raw)
    scheme = (parsed.scheme or "").lower().strip()
    if scheme not in {"http", "https"}:
        return None
    hostname = (parsed.hostname or "").strip()
    if not hostname:
        return None
    port = parsed.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        return f"{scheme}://{hostname}:{port}"
    return f"{scheme}://{hostname}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    database_url: AnyUrl | None = None
    database_pool_max_size: int = 10
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    frontend_base_url: str | None = "http://localhost:3000"

    razorpay_key_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("RAZORPAY_KEY_ID", "RAZORPAY_TEST_KEY_ID"),
    )
    razorpay_key_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "RAZORPAY_KEY_SECRET",
            "RAZORPAY_SECRET",
            "RAZORPAY_TEST_KEY_SECRET",
        ),
    )
    payment_currency: str = "INR"
    subscription_period_days: int = 30

    zoom_account_id: str | None = Field(
        default=None, validation_alias=AliasChoices("ZOOM_ACCOUNT_ID")
    )
    zoom_client_id: str | None = Field(
        default=None, validation_alias=AliasChoices("ZOOM_CLIENT_ID", "ZOOM_API_KEY")
    )
    zoom_client_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ZOOM_CLIENT_SECRET", "ZOOM_API_SECRET"),
    )
    zoom_api_url: str = "https://api.zoom.us/v2"
    zoom_oauth_url: str = "https://zoom.us/oauth/token"
    zoom_timezone: str = "Asia/Kolkata"
    zoom_default_duration_minutes: int = 60
    meeting_request_timeout_seconds: float = 10.0
    meeting_create_retries: int = 1

    cors_allow_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_allow_origin_regex: str | None = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
    log_level: str = "INFO"
    sentry_dsn: str | None = Field(
        default=None, validation_alias=AliasChoices("SENTRY_DSN", "BACKEND_SENTRY_DSN")
    )
    sentry_traces_sample_rate: float = Field(
        default=0.0,
        validation_alias=AliasChoices(
            "SENTRY_TRACES_SAMPLE_RATE",
            "BACKEND_SENTRY_TRACES_SAMPLE_RATE",
        ),
    )

    @model_validator(mode="after")
    def _check_database_url(self):
        if self.database_url is None:
            raise ValueError("DATABASE_URL is required")

        frontend_origin = _cors_origin_from_url(self.frontend_base_url)
        if frontend_origin:
            existing = {origin.strip().lower() for origin in self.cors_allow_origins if origin}
            if frontend_origin.strip().lower() not in existing:
                self.cors_allow_origins.append(frontend_origin)

        return self

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("meeting_create_retries")
    @classmethod
    def _bounded_retries(cls, value: int) -> int:
        if value < 0 or value > 1:
            raise ValueError("meeting_create_retries must be 0 or 1")
        return value

    def secret_values(self) -> list[str]:
        """Configured secrets that must never reach a log line."""
        candidates = (
            self.razorpay_key_secret,
            self.zoom_client_secret,
            self.jwt_secret if self.jwt_secret != "change-me" else None,
        )
        return [value for value in candidates if value]


settings = Settings()
