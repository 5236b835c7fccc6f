"""Bootstrap — wires settings into a ready PokeEngine and owns resource lifetimes.

Invariants:
    - Every IO resource (DB pool, Redis connection, GitHub HTTP client) is created here
      and closed by EngineRuntime.close(), nothing else opens them
    - build_engine() performs no IO: connections are opened lazily on first use
    - Logging configured once per lifespan, before the first engine call

Design Decisions:
    - Lifespan context manager over module globals: tests and host apps control
      startup/shutdown explicitly (ADR: no global import side effects)
    - Collaborators injectable (redis client, HTTP transport, event sink) so hosts
      and tests swap infrastructure without touching engine code
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
import redis.asyncio as redis

from gitpoke.config import Settings, get_settings
from gitpoke.core.cache_policy import FreshnessPolicy
from gitpoke.core.repository_protocols import PokeEventSink
from gitpoke.infrastructure.counting_store import RedisCountingStore
from gitpoke.infrastructure.database import DatabaseSessionManager
from gitpoke.infrastructure.github_client import ResilientGitHubClient
from gitpoke.infrastructure.github_gateways import (
    GitHubActivityGateway, GitHubRelationGateway, KnownLogins,
)
from gitpoke.infrastructure.observability import setup_logging
from gitpoke.infrastructure.poke_event_sink import LoggingPokeEventSink
from gitpoke.infrastructure.user_repository import SqlUserRepository
from gitpoke.services.cache_orchestrator import CacheOrchestrator
from gitpoke.services.poke_engine import PokeEngine
from gitpoke.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class EngineRuntime:
    """A wired engine plus the resources it must release."""
    engine: PokeEngine
    db: DatabaseSessionManager
    store: RedisCountingStore
    github: ResilientGitHubClient

    async def readiness(self) -> dict[str, bool]:
        """Dependency health for readiness probes."""
        return {
            "database": await self.db.health_check(),
            "counting_store": await self.store.ping(),
        }

    async def close(self) -> None:
        await self.engine.cache.wait_for_background()
        await self.github.close()
        await self.store.close()
        await self.db.dispose()


def build_engine(
    settings: Settings | None = None,
    redis_client: redis.Redis | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    event_sink: PokeEventSink | None = None,
) -> EngineRuntime:
    """Create every collaborator from settings and wire them into a PokeEngine."""
    settings = settings or get_settings()

    db = DatabaseSessionManager(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )
    if redis_client is not None:
        store = RedisCountingStore(redis_client)
    else:
        store = RedisCountingStore.from_url(
            settings.redis_url, socket_timeout=settings.redis_socket_timeout_seconds,
        )
    github = ResilientGitHubClient(
        token=settings.github_token,
        api_url=settings.github_api_url,
        graphql_url=settings.github_graphql_url,
        max_retries=settings.github_max_retries,
        base_delay_ms=settings.github_base_delay_ms,
        max_delay_ms=settings.github_max_delay_ms,
        timeout_seconds=settings.github_timeout_seconds,
        transport=transport,
    )
    logins = KnownLogins(ttl_seconds=settings.github_login_memory_seconds)
    cache = CacheOrchestrator(
        store,
        policy=FreshnessPolicy(
            stale_grace_seconds=settings.cache_stale_grace_seconds,
            revalidate_backoff_seconds=settings.cache_revalidate_backoff_seconds,
            max_age_seconds=settings.cache_max_age_seconds,
        ),
        lease_seconds=settings.cache_lease_seconds,
    )
    engine = PokeEngine(
        users=SqlUserRepository(db),
        activity_gateway=GitHubActivityGateway(
            github, history_window_weeks=settings.history_window_weeks, logins=logins,
        ),
        relation_gateway=GitHubRelationGateway(github, logins=logins),
        rate_limiter=RateLimiter(store, settings.rate_limit_rules()),
        cache=cache,
        event_sink=event_sink or LoggingPokeEventSink(),
        inactivity_threshold_days=settings.inactivity_threshold_days,
        active_ttl_seconds=settings.cache_active_ttl_seconds,
        inactive_ttl_seconds=settings.cache_inactive_ttl_seconds,
        capability_ttl_seconds=settings.cache_capability_ttl_seconds,
        schema_version=settings.cache_schema_version,
    )
    return EngineRuntime(engine=engine, db=db, store=store, github=github)


@asynccontextmanager
async def engine_lifespan(
    settings: Settings | None = None, create_schema: bool = False, **overrides,
) -> AsyncIterator[EngineRuntime]:
    """Startup/shutdown lifecycle for hosts embedding the engine."""
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_format)
    runtime = build_engine(settings, **overrides)
    if create_schema:
        await runtime.db.create_schema()
    logger.info("GitPoke engine started")
    try:
        yield runtime
    finally:
        logger.info("GitPoke engine shutting down")
        await runtime.close()
