"""Resilient GitHub Client — wraps httpx.AsyncClient with timeout, retry, backoff, and error mapping.

Invariants:
    - Every call is bounded by timeout_seconds (asyncio.wait_for around the whole request)
    - Rate limits (429, or 403 with x-ratelimit-remaining: 0): backoff honoring Retry-After /
      x-ratelimit-reset, but never sleeping longer than max_delay_ms
    - Transient errors (5xx, connection, timeout): at most max_retries retries, then raise
    - 404 is returned to the caller (gateways decide: NotFound vs "does not follow")
    - Other 4xx: immediate failure, no retry
    - All failures mapped to InfraError subclasses (core/errors.py)

Design Decisions:
    - Wrapper over raw client: isolates retry logic from the gateways (ADR: single responsibility)
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - Injectable transport: tests use httpx.MockTransport, no network
"""

import asyncio
import random
import logging
import time

import httpx

from gitpoke.core.errors import (
    ErrorContext,
    UpstreamRateLimitedError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

_API_VERSION = "2022-11-28"


class _RateLimited(Exception):
    def __init__(self, retry_after_ms: int | None):
        self.retry_after_ms = retry_after_ms


class _Transient(Exception):
    pass


class ResilientGitHubClient:
    """Wraps httpx client with retry logic, timeouts, and error mapping."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        graphql_url: str = "https://api.github.com/graphql",
        max_retries: int = 2,
        base_delay_ms: int = 100,
        max_delay_ms: int = 5_000,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": _API_VERSION,
                "User-Agent": "gitpoke",
            },
            timeout=timeout_seconds,
            transport=transport,
        )
        self.graphql_url = graphql_url
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.timeout_seconds = timeout_seconds

    async def get(self, path: str, context: ErrorContext | None = None) -> httpx.Response:
        """GET a REST path. Returns 2xx and 404 responses; raises on everything else."""
        return await self._request("GET", path, context=context)

    async def graphql(
        self, query: str, variables: dict, context: ErrorContext | None = None,
    ) -> dict:
        """POST a GraphQL query. Returns `data`; NOT_FOUND errors leave nulls in it."""
        response = await self._request(
            "POST", self.graphql_url,
            json={"query": query, "variables": variables},
            context=context,
        )
        payload = response.json()
        errors = payload.get("errors") or []
        fatal = [e for e in errors if e.get("type") != "NOT_FOUND"]
        if any(e.get("type") == "RATE_LIMITED" for e in fatal):
            raise UpstreamRateLimitedError("GraphQL rate limit", context=context)
        if fatal:
            raise UpstreamUnavailableError(
                f"GraphQL error: {fatal[0].get('message', 'unknown')}", context=context,
            )
        return payload.get("data") or {}

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(
        self, method: str, url: str, context: ErrorContext | None = None, **kwargs,
    ) -> httpx.Response:
        for attempt in range(self.max_retries + 1):
            try:
                response = await asyncio.wait_for(
                    self.client.request(method, url, **kwargs),
                    timeout=self.timeout_seconds,
                )
                self._raise_for_status(response)
                if attempt:
                    logger.info(
                        f"GitHub {method} {url} succeeded after retry",
                        extra={"attempt": attempt + 1},
                    )
                return response

            except _RateLimited as e:
                await self._handle_rate_limit(e, attempt, context)

            except (asyncio.TimeoutError, httpx.TimeoutException):
                if attempt >= self.max_retries:
                    raise UpstreamTimeoutError(
                        f"{method} {url}", self.timeout_seconds, context=context,
                    )
                await self._sleep_backoff(attempt, f"timeout on {method} {url}")

            except (httpx.TransportError, _Transient) as e:
                if attempt >= self.max_retries:
                    raise UpstreamUnavailableError(
                        f"{method} {url} failed after {self.max_retries} retries: {e}",
                        context=context,
                    )
                await self._sleep_backoff(attempt, f"transient error: {e}")

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400 or status == 404:
            return
        if status == 429 or (status == 403 and self._is_rate_limit(response)):
            raise _RateLimited(self._extract_retry_after(response))
        if status >= 500:
            raise _Transient(f"HTTP {status}")
        raise UpstreamUnavailableError(
            f"GitHub rejected {response.request.method} {response.request.url} with {status}",
        )

    async def _handle_rate_limit(
        self, e: _RateLimited, attempt: int, context: ErrorContext | None,
    ) -> None:
        """Handle rate limit error with retry or raise."""
        retry_after_ms = e.retry_after_ms
        retry_after_seconds = (
            max(1, retry_after_ms // 1000) if retry_after_ms is not None else None
        )
        if attempt >= self.max_retries or (
            retry_after_ms is not None and retry_after_ms > self.max_delay_ms
        ):
            raise UpstreamRateLimitedError(
                "GitHub rate limit exceeded",
                retry_after_seconds=retry_after_seconds,
                context=context,
            )
        delay = retry_after_ms or self._backoff(attempt)
        logger.warning(
            f"GitHub rate limit hit, retry after {delay}ms",
            extra={"attempt": attempt + 1, "retry_after_seconds": retry_after_seconds},
        )
        await asyncio.sleep(delay / 1000)

    async def _sleep_backoff(self, attempt: int, reason: str) -> None:
        delay = self._backoff(attempt)
        logger.warning(
            f"GitHub {reason}, retry after {delay}ms", extra={"attempt": attempt + 1},
        )
        await asyncio.sleep(delay / 1000)

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    @staticmethod
    def _is_rate_limit(response: httpx.Response) -> bool:
        return (
            response.headers.get("x-ratelimit-remaining") == "0"
            or "retry-after" in response.headers
        )

    @staticmethod
    def _extract_retry_after(response: httpx.Response) -> int | None:
        """Retry-After (seconds) or x-ratelimit-reset (epoch) → milliseconds."""
        retry_after = response.headers.get("retry-after")
        if retry_after and retry_after.isdigit():
            return int(retry_after) * 1000
        reset = response.headers.get("x-ratelimit-reset")
        if reset and reset.isdigit():
            return max(0, int(reset) - int(time.time())) * 1000
        return None
