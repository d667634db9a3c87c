"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Defaults are provided for all fields so the
API starts in development mode with an SQLite file next to the
package and in-memory rate limiting and caching.  In a production
deployment set ``ENVIRONMENT=production``, a real ``SECRET_KEY``, the
public ``APP_URL`` and, when more than one instance is running, a
shared ``REDIS_URL``.
"""

import os
from dataclasses import dataclass
from typing import List


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Directory API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    # Optional path of a log file written next to the console output.
    log_file: str = os.getenv("LOG_FILE", "")
    secret_key: str = os.getenv("SECRET_KEY", "change_me")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))

    # Path or connection string for the SQLite database.  A relative
    # path is resolved relative to the project root by the ``db`` module.
    database_url: str = os.getenv("DATABASE_URL", "directory.db")
    # Seconds a connection waits for the write lock before giving up.
    sqlite_timeout: float = float(os.getenv("SQLITE_TIMEOUT", "5"))

    # Public URL of the front end.  Together with ``ALLOWED_ORIGINS``
    # (comma separated) it forms the allow-list of the origin guard.
    app_url: str = os.getenv("APP_URL", "")
    allowed_origins: str = os.getenv("ALLOWED_ORIGINS", "")

    # Proxy headers trusted to carry the client address, in order of
    # preference.  Empty means the socket address is used.  Only list
    # headers your proxy overwrites, e.g. "cf-connecting-ip" behind
    # Cloudflare or "x-forwarded-for" behind a proxy that replaces it.
    trusted_ip_headers: str = os.getenv("TRUSTED_IP_HEADERS", "")

    # When set, rate-limit counters and cached views are kept in Redis
    # so that several API instances share one budget per identity.
    redis_url: str = os.getenv("REDIS_URL", "")
    cache_ttl_seconds: int = int(os.getenv("CACHE_TTL_SECONDS", "3600"))

    # Number of distinct flags that moves a review to ``flagged``.
    flag_threshold: int = int(os.getenv("FLAG_THRESHOLD", "3"))
    # Trailing window for ``recent_ratings_count`` on listings.
    recent_ratings_days: int = int(os.getenv("RECENT_RATINGS_DAYS", "30"))

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def allowed_origin_list(self) -> List[str]:
        """Return the configured origins accepted for mutating requests."""
        origins = _split_csv(self.allowed_origins)
        if self.app_url:
            origins.append(self.app_url)
        if not self.is_production:
            origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])
        return origins

    def trusted_ip_header_list(self) -> List[str]:
        return [header.lower() for header in _split_csv(self.trusted_ip_headers)]


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.  Because the dataclass
# computes values at instantiation time, environment variables should
# be set before importing this module.
settings = Settings()
