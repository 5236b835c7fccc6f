"""Error Hierarchy — typed, categorized exceptions for all GitPoke failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Validation errors are raised before any IO and are never retried
    - InfraError subclasses are transient (retry/fallback eligible); nothing else is
    - Poke denials are NOT exceptions — they are CannotPoke values (core/poke_capability.py)
    - to_response() produces a transport-neutral error envelope; no internal details leaked

Design Decisions:
    - Single hierarchy with GitPokeError base: callers catch one type at the boundary
      (ADR: uniform error shape)
    - http_status is a hint for the (external) HTTP layer, not used inside the engine
    - ErrorContext as dataclass: rich observability without coupling to logging framework
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RATE_LIMIT = "rate_limit"
    DATABASE = "database"
    COUNTING_STORE = "counting_store"
    EXTERNAL_API = "external_api"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


@dataclass
class ErrorContext:
    """Rich context for error observability and debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    username: str | None = None
    scope: str | None = None
    cache_key: str | None = None
    user_message: str | None = None
    debug_info: dict[str, Any] | None = None
    retry_after_seconds: int | None = None


class GitPokeError(Exception):
    """Base exception for all GitPoke errors."""

    transient: bool = False

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized error envelope."""
        return {
            "error": {
                "code": self.code,
                "message": self.context.user_message or self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "transient": self.transient,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "username": self.context.username,
                    "scope": self.context.scope,
                    "retry_after_seconds": self.context.retry_after_seconds,
                },
            }
        }


# ─── Validation Errors (400-level, raised before IO) ────────────

class UsernameValidationError(GitPokeError):
    """Username is empty, too long, or has an invalid format."""
    def __init__(self, message: str, value: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_USERNAME", ErrorCategory.VALIDATION,
            ErrorSeverity.WARNING, context, 400,
        )
        self.value = value


class AccountIdValidationError(GitPokeError):
    """Account identifier is not a positive integer."""
    def __init__(self, value: object, context: ErrorContext | None = None):
        super().__init__(
            f"Invalid account id: {value!r}",
            "INVALID_ACCOUNT_ID", ErrorCategory.VALIDATION,
            ErrorSeverity.WARNING, context, 400,
        )
        self.value = value


class InvalidHistoryError(GitPokeError):
    """Contribution history violates its input contract (duplicates, negative counts)."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "INVALID_HISTORY", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 422,
        )


class InsufficientDataError(GitPokeError):
    """Contribution history is empty — no activity state can be derived."""
    def __init__(self, context: ErrorContext | None = None):
        super().__init__(
            "Contribution history must contain at least one day",
            "INSUFFICIENT_DATA", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 422,
        )


# ─── Domain Errors (authoritative, never retried) ───────────────

class UserNotFoundError(GitPokeError):
    """Account does not exist on the activity platform."""
    def __init__(self, username: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.username = ctx.username or username
        super().__init__(
            f"User '{username}' not found",
            "USER_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.WARNING, ctx, 404,
        )
        self.username = username


class RegistrationRequiredError(GitPokeError):
    """Operation requires a registered user."""
    def __init__(self, username: str, context: ErrorContext | None = None):
        ctx = context or ErrorContext()
        ctx.username = ctx.username or username
        super().__init__(
            f"User '{username}' is not registered",
            "REGISTRATION_REQUIRED", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.WARNING, ctx, 404,
        )
        self.username = username


class RateLimitExceededError(GitPokeError):
    """Caller exhausted a rate-limit window (badge reads)."""
    def __init__(
        self, scope: str, retry_after_seconds: int, context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.scope = scope
        ctx.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Rate limit exceeded for {scope}; retry after {retry_after_seconds}s",
            "RATE_LIMITED", ErrorCategory.RATE_LIMIT,
            ErrorSeverity.WARNING, ctx, 429,
        )
        self.scope = scope
        self.retry_after_seconds = retry_after_seconds


# ─── Infrastructure Errors (transient, 500-level) ───────────────

class InfraError(GitPokeError):
    """Base for transient infrastructure failures."""

    transient = True


class UpstreamUnavailableError(InfraError):
    """Activity/relation platform unreachable or returned 5xx."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            f"Upstream unavailable: {message}",
            "UPSTREAM_UNAVAILABLE", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.CRITICAL, context, 503,
        )


class UpstreamRateLimitedError(InfraError):
    """Activity/relation platform rejected the call with a rate limit."""
    def __init__(
        self,
        message: str,
        retry_after_seconds: int | None = None,
        context: ErrorContext | None = None,
    ):
        ctx = context or ErrorContext()
        ctx.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Upstream rate limited: {message}",
            "UPSTREAM_RATE_LIMITED", ErrorCategory.EXTERNAL_API,
            ErrorSeverity.ERROR, ctx, 503,
        )
        self.retry_after_seconds = retry_after_seconds


class UpstreamTimeoutError(InfraError):
    """Upstream call exceeded its bounded timeout."""
    def __init__(self, operation: str, timeout_seconds: float, context: ErrorContext | None = None):
        super().__init__(
            f"Upstream {operation} timed out after {timeout_seconds}s",
            "UPSTREAM_TIMEOUT", ErrorCategory.TIMEOUT,
            ErrorSeverity.ERROR, context, 504,
        )
        self.operation = operation


class CountingStoreUnavailableError(InfraError):
    """Shared counting/caching store could not be reached."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Counting store {operation} failed: {message}",
            "COUNTING_STORE_UNAVAILABLE", ErrorCategory.COUNTING_STORE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation


class DatabaseError(InfraError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
