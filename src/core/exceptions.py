"""
Error taxonomy for the tutor pipeline.

Every failure that crosses the gateway boundary is one of these classes, so the
HTTP layer can render a consistent payload and callers can decide whether to
retry by looking at ``retryable``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class TutorError(Exception):
    """Base class for pipeline errors."""

    status_code: int = 500
    error_type: str = "unknown"
    retryable: bool = False
    user_message: str = "An unexpected error occurred. Please try again."

    def __init__(
        self,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or self.user_message)
        self.message = message or self.user_message
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "error": self.error_type,
            "message": self.user_message,
            "detail": self.message,
        }
        payload.update(self.extra)
        return payload


class DailyLimitError(TutorError):
    status_code = 429
    error_type = "daily_limit_exceeded"
    user_message = "Daily limit reached. Your quota resets at midnight UTC."

    def __init__(self, remaining: int, reset_time: str, tier: str) -> None:
        super().__init__(
            f"Daily request limit exceeded for {tier} tier",
            extra={"remaining": remaining, "reset_time": reset_time, "tier": tier},
        )
        self.remaining = remaining
        self.reset_time = reset_time
        self.tier = tier


class ProviderError(TutorError):
    """A failed language-model provider call."""


class ProviderRateLimitError(ProviderError):
    status_code = 429
    error_type = "rate_limit"
    retryable = True
    user_message = "Too many requests. Please wait a moment before trying again."


class PaymentRequiredError(ProviderError):
    status_code = 402
    error_type = "payment_required"
    user_message = (
        "AI service credits are exhausted. Please try again later or contact support."
    )


class AuthenticationError(ProviderError):
    status_code = 401
    error_type = "auth_error"
    user_message = "The AI service rejected our credentials. Please contact support."


class NetworkError(ProviderError):
    status_code = 503
    error_type = "network_error"
    retryable = True
    user_message = "Unable to reach the AI service. Please check your connection and try again."


class UnknownProviderError(ProviderError):
    status_code = 502
    error_type = "unknown"
    retryable = True


_PROVIDER_ERRORS = {
    "rate_limit": ProviderRateLimitError,
    "payment_required": PaymentRequiredError,
    "auth_error": AuthenticationError,
    "network_error": NetworkError,
    "unknown": UnknownProviderError,
}


def classify_status(status_code: int) -> str:
    """Map a non-2xx provider status to an error type."""

    if status_code == 429:
        return "rate_limit"
    if status_code == 402:
        return "payment_required"
    if status_code in (401, 403):
        return "auth_error"
    if status_code >= 500:
        return "network_error"
    return "unknown"


def provider_error_for_status(status_code: int, message: str) -> ProviderError:
    error_cls = _PROVIDER_ERRORS[classify_status(status_code)]
    error = error_cls(message, extra={"provider_status": status_code})
    if error_cls is AuthenticationError:
        error.status_code = status_code
    return error


class IngestionError(TutorError):
    """Base class for failures that mark a document as failed."""

    status_code = 422
    error_type = "ingestion_error"
    user_message = "We could not process this document. You can reprocess it."


class StorageError(IngestionError):
    error_type = "storage_error"


class ExtractionError(IngestionError):
    error_type = "extraction_error"
    user_message = "No text could be extracted from this document."


class EmbeddingError(IngestionError):
    error_type = "embedding_error"
    user_message = "Embedding generation failed. You can reprocess the document."


class DocumentWaitTimeout(TutorError):
    status_code = 408
    error_type = "processing_timeout"
    user_message = "The document is still processing. Check back shortly."


class CacheError(TutorError):
    error_type = "cache_error"
