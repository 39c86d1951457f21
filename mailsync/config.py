from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

DEFAULT_REDIRECT_URI = "http://localhost:8000/auth/gmail/callback"


class Settings(BaseSettings):
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase: caller identity (JWKS) and the Postgres sync store
    SUPABASE_URL: str | None = None
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str | None = None

    # Google OAuth client used for the Gmail grant
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_REDIRECT_URI: str | None = None

    # Fernet key for tokens at rest
    ENCRYPTION_KEY: str | None = None

    OAUTH_STATE_SECRET: str | None = None
    OAUTH_STATE_TTL_SECONDS: int = 900
    TOKEN_REFRESH_BUFFER_MINUTES: int = 5

    # =================================================================
    # SYNC RUN BUDGET
    # =================================================================
    GMAIL_SYNC_DEFAULT_DAYS: int = 30
    GMAIL_SYNC_DEFAULT_MAX_EMAILS: int = 100
    GMAIL_SYNC_MAX_EMAILS_LIMIT: int = 500
    GMAIL_SYNC_TIMEOUT_SECONDS: float = 300.0
    GMAIL_SYNC_PAGE_SIZE: int = 100
    SYNC_STALE_AFTER_MINUTES: int = 30

    # =================================================================
    # GOOGLE HTTP CALLS
    # =================================================================
    PROVIDER_MAX_ATTEMPTS: int = 3
    PROVIDER_BACKOFF_BASE_SECONDS: float = 1.0
    PROVIDER_BACKOFF_MAX_SECONDS: float = 8.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # =================================================================
    # SYNC STORE POOL
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0
    DB_POOL_MAX_LIFETIME: float = 3600.0
    DB_STATEMENT_TIMEOUT_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        if not self.SUPABASE_URL:
            raise ValueError("SUPABASE_URL or SUPABASE_JWKS_URL must be configured")
        return f"{self.SUPABASE_URL.rstrip('/')}/auth/v1/.well-known/jwks.json"

    def gmail_redirect_uri(self) -> str:
        return self.GOOGLE_REDIRECT_URI or DEFAULT_REDIRECT_URI

    def oauth_state_secret(self) -> str | None:
        """State signing secret, falling back to the OAuth client secret."""
        return self.OAUTH_STATE_SECRET or self.GOOGLE_CLIENT_SECRET

    def get_db_pool_config(self) -> dict:
        """Keyword arguments for `AsyncConnectionPool`; development runs a smaller pool."""
        if self.environment == "development":
            min_size, max_size, timeout = 2, 6, 15.0
        else:
            min_size, max_size, timeout = (
                self.DB_POOL_MIN_SIZE,
                self.DB_POOL_MAX_SIZE,
                self.DB_POOL_TIMEOUT,
            )
        return {
            "min_size": min_size,
            "max_size": max_size,
            "timeout": timeout,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }


settings = Settings()
