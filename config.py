"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

Every component receives the sub-config it needs explicitly at construction
time (see app.py / dependencies.py); nothing reads os.environ at call time.
"""

from __future__ import annotations

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "fitness-tracker"


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    # Optional claims; omitted from the assertion when empty
    jwt_issuer: str = ""
    jwt_audience: str = ""

    session_ttl_seconds: int = 86400
    cookie_name: str = "token"
    # Frontend and API served from different sites (SameSite=None)
    cross_origin_cookies: bool = False


class TokenSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    registration_token_ttl_seconds: int = 86400
    reset_token_ttl_seconds: int = 3600
    oauth_state_ttl_seconds: int = 600
    username_max_attempts: int = 5


class OAuthProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    google_oauth_client_id: str = ""
    google_oauth_client_secret: str = ""
    google_oauth_redirect_uri: str = ""

    # Refuse to attach an external identity to an existing account by email
    # unless the provider asserts the email is verified
    oauth_link_requires_verified_email: bool = True


class EmailSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    zepto_api_token: str = ""
    zepto_from_email: str = "noreply@fitness-tracker.app"
    zepto_from_name: str = "Fitness Tracker"


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1


class RateLimitSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    rate_limit_enabled: bool = True
    # Any `limits` storage URI, e.g. "memory://", "redis://host:6379", "mongodb://..."
    rate_limit_storage_uri: str = "memory://"
    # Empty means "5 per 15 minutes" in production, "50 per 15 minutes" elsewhere
    auth_rate_limit: str = ""
    logout_rate_limit: str = "20 per 15 minutes"
    # Key on CF-Connecting-IP / X-Forwarded-For; enable only behind a reverse proxy
    trust_proxy_headers: bool = False


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_name: str = "Fitness Tracker API"
    app_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"

    cors_origins: list[str] = ["http://localhost:3000"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    jwt: Optional[JWTSettings] = None
    tokens: Optional[TokenSettings] = None
    oauth: Optional[OAuthProviderSettings] = None
    email: Optional[EmailSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None
    rate_limit: Optional[RateLimitSettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.tokens is None:
            self.tokens = TokenSettings()
        if self.oauth is None:
            self.oauth = OAuthProviderSettings()
        if self.email is None:
            self.email = EmailSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()
        if self.rate_limit is None:
            self.rate_limit = RateLimitSettings()

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def auth_rate_limit(self) -> str:
        if self.rate_limit.auth_rate_limit:
            return self.rate_limit.auth_rate_limit
        return "5 per 15 minutes" if self.is_production else "50 per 15 minutes"
