"""
Error taxonomy for the document pipeline.

Every error carries an HTTP status, a stable machine-readable code and a
message that is safe to show to the client. Internal detail belongs in the
logs, never in `message`.
"""
from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    status_code = 500
    code = "INTERNAL_ERROR"
    message = "Internal server error"

    def __init__(self, message: str | None = None, **extra: Any):
        self.message = message or self.message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.extra}

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(PipelineError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid input"


class AuthError(PipelineError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Unauthorized"


class QuotaExceeded(PipelineError):
    status_code = 403
    code = "LIMIT_REACHED"

    def __init__(self, free_limit: int):
        super().__init__(
            f"You have used your {free_limit} free credits. Please subscribe to continue.",
            requiresUpgrade=True,
            creditsRemaining=0,
        )


class NotFoundError(PipelineError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Job not found"


class ConflictError(PipelineError):
    status_code = 409
    code = "CONFLICT"


class RetryLimitReached(ConflictError):
    code = "RETRY_LIMIT_REACHED"


class RateLimited(PipelineError):
    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after_ms: int):
        super().__init__("Too many requests. Please wait.", retryAfterMs=retry_after_ms)
        self.retry_after_ms = retry_after_ms

    def headers(self) -> dict[str, str]:
        # Retry-After is expressed in whole seconds
        return {"Retry-After": str(max(1, -(-self.retry_after_ms // 1000)))}


class DependencyError(PipelineError):
    status_code = 503
    code = "DEPENDENCY_UNAVAILABLE"
    message = "A required service is temporarily unavailable"


class InternalError(PipelineError):
    pass


class StorageError(DependencyError):
    """Object storage could not complete an operation."""

    code = "STORAGE_ERROR"


class QuotaStoreError(DependencyError):
    """The quota ledger could not be read or written."""

    code = "QUOTA_STORE_ERROR"


class ExtractionError(PipelineError):
    """The uploaded file could not be turned into text."""

    status_code = 422
    code = "EXTRACTION_FAILED"

    def __init__(self, message: str, code: str = "EXTRACTION_FAILED"):
        super().__init__(message)
        self.code = code


class ProviderError(DependencyError):
    """An AI provider call failed.

    `retryable` marks rate limiting and transient server errors; anything
    else moves the orchestrator straight to the next provider.
    """

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class AnalysisParseError(PipelineError):
    """A provider answered but the answer was not usable JSON."""

    code = "ANALYSIS_PARSE_ERROR"
