"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the billing API happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. db_host -> DB_HOST). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Assembles the async MySQL URL from its parts when DATABASE_URL
      is not given, and rejects session timeouts that would make every new
      session expire on creation.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, billing/, or db/.
"""

import logging
from functools import lru_cache
from urllib.parse import quote_plus

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("billing.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    app_version: str = "2.0.0"

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    # Full SQLAlchemy URL. Empty string means "build it from the parts below".
    database_url: str = ""
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "billing"
    db_password: str = ""
    db_name: str = "billing_system"
    db_pool_size: int = 10
    db_pool_timeout: int = 30  # seconds to wait for a pooled connection
    db_pool_recycle: int = 3600

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_timeout_seconds: int = 8 * 60 * 60
    session_sweep_interval_seconds: int = 15 * 60
    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # Login hardening
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    frontend_origin: str = "http://localhost:3002"
    # Comma-separated Host header allow-list for TrustedHostMiddleware.
    allowed_hosts: str = "localhost,127.0.0.1,*.localhost"

    # ------------------------------------------------------------------
    # Billing
    # ------------------------------------------------------------------

    gst_rate: float = 0.18
    invoice_prefix: str = "INV"

    # ------------------------------------------------------------------
    # SMTP (consumed by the mail sender, which runs outside this service)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_database(self) -> "Settings":
        """Build DATABASE_URL from DB_* parts and sanity-check timeouts.

        The password is URL-quoted so characters such as '@' in DB_PASSWORD
        do not break URL parsing.
        """
        if not self.database_url:
            self.database_url = (
                f"mysql+aiomysql://{quote_plus(self.db_user)}:{quote_plus(self.db_password)}"
                f"@{self.db_host}:{self.db_port}/{self.db_name}"
            )
            if not self.db_password:
                logger.warning("DB_PASSWORD is empty -- connecting to %s without a password", self.db_host)
        if self.session_timeout_seconds <= 0:
            raise ValueError("SESSION_TIMEOUT_SECONDS must be a positive number of seconds.")
        if self.db_pool_size < 1:
            raise ValueError("DB_POOL_SIZE must be at least 1.")
        return self

    @property
    def cors_origins(self) -> list[str]:
        """FRONTEND_ORIGIN may hold a comma-separated list of origins."""
        return [o.strip() for o in self.frontend_origin.split(",") if o.strip()]

    @property
    def trusted_hosts(self) -> list[str]:
        return [h.strip() for h in self.allowed_hosts.split(",") if h.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
