"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - Rate-limit thresholds and cache TTLs are tunable defaults, not contracts

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support (ADR: developer UX)
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from gitpoke.core.rate_limit_rules import RateLimitRule, RateLimitScope


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database (registered users)
    database_url: str = (
        "postgresql+asyncpg://gitpoke:gitpoke@db:5432/gitpoke"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Managed Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Counting / caching store
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 1.0

    # GitHub
    github_token: str = "ghp-placeholder"
    github_api_url: str = "https://api.github.com"
    github_graphql_url: str = "https://api.github.com/graphql"
    github_timeout_seconds: float = 5.0
    github_max_retries: int = 2  # 3 attempts in total
    github_base_delay_ms: int = 100
    github_max_delay_ms: int = 5_000
    github_login_memory_seconds: int = 600

    # Activity
    inactivity_threshold_days: int = 7
    history_window_weeks: int = 52

    # Rate limits
    poke_per_ip_limit: int = 10
    poke_per_ip_window_seconds: int = 60
    poke_per_pair_limit: int = 1
    poke_per_pair_window_seconds: int = 86_400
    badge_read_per_ip_limit: int = 100
    badge_read_per_ip_window_seconds: int = 60

    # Cache
    cache_schema_version: int = 1
    cache_active_ttl_seconds: int = 300
    cache_inactive_ttl_seconds: int = 3_600
    cache_capability_ttl_seconds: int = 300
    cache_stale_grace_seconds: int = 86_400
    cache_revalidate_backoff_seconds: int = 300
    cache_max_age_seconds: int = 7 * 86_400
    cache_lease_seconds: int = 30

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    def rate_limit_rules(self) -> dict[RateLimitScope, RateLimitRule]:
        return {
            RateLimitScope.POKE_BY_IP: RateLimitRule(
                RateLimitScope.POKE_BY_IP,
                self.poke_per_ip_limit, self.poke_per_ip_window_seconds,
            ),
            RateLimitScope.POKE_BY_PAIR: RateLimitRule(
                RateLimitScope.POKE_BY_PAIR,
                self.poke_per_pair_limit, self.poke_per_pair_window_seconds,
            ),
            RateLimitScope.BADGE_READ_BY_IP: RateLimitRule(
                RateLimitScope.BADGE_READ_BY_IP,
                self.badge_read_per_ip_limit, self.badge_read_per_ip_window_seconds,
                fail_open=True,
            ),
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
