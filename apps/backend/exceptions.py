"""
Custom exception hierarchy for the rewarded-ad backend.

All exceptions inherit from RewardsError so route handlers and the global
exception handler can catch and render them uniformly.

Exception Hierarchy:
    RewardsError (base)
    ├── ValidationError
    │   └── InvalidSignatureError
    ├── ResourceNotFoundError
    ├── RateLimitError
    ├── PersistenceError
    └── ExternalServiceError
        └── KeyFetchError

Usage:
    from exceptions import InvalidSignatureError, PersistenceError

    raise InvalidSignatureError("Unknown key id", detail={"key_id": key_id})

    try:
        await handle_completion_callback(session, callback)
    except PersistenceError as e:
        logger.warning(f"Callback will be retried by the provider: {e}")
"""

from typing import Optional, Dict, Any


class RewardsError(Exception):
    """
    Base exception for all rewarded-ad application errors.

    Attributes:
        message: Human-readable error message
        detail: Optional dict with additional error context
        status_code: Suggested HTTP status code (for API errors)
        transient: True if the same request may succeed when retried
    """

    transient = False

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(RewardsError):
    """
    Raised when input validation fails.

    Examples:
        raise ValidationError("reward_amount must be positive")
        raise ValidationError("Unknown reward item", detail={"reward_item": "gems"})
    """

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=400)


class InvalidSignatureError(ValidationError):
    """
    Raised when a completion callback fails authenticity checks.

    Permanent: the provider must not retry, and nothing is written to the ledger.
    """


class ResourceNotFoundError(RewardsError):
    """Raised when a requested resource doesn't exist."""

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=404)


class RateLimitError(RewardsError):
    """
    Raised when rate limit is exceeded.

    Examples:
        raise RateLimitError("Too many requests", retry_after=30)
    """

    transient = True

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        retry_after: Optional[int] = None,
    ):
        if retry_after and detail is None:
            detail = {"retry_after": retry_after}
        elif retry_after and detail:
            detail["retry_after"] = retry_after

        super().__init__(message, detail=detail, status_code=429)


class PersistenceError(RewardsError):
    """
    Raised when a ledger/wallet transaction fails to commit.

    The transaction has been rolled back in full, so the caller (usually the
    ad provider's webhook delivery) can safely retry.
    """

    transient = True

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, status_code=503)


class ExternalServiceError(RewardsError):
    """Base exception for external service failures."""

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[Dict[str, Any]] = None,
        service_name: Optional[str] = None,
        status_code: int = 502,
    ):
        if service_name and detail is None:
            detail = {"service": service_name}
        elif service_name and detail:
            detail["service"] = service_name

        super().__init__(message, detail=detail, status_code=status_code)


class KeyFetchError(ExternalServiceError):
    """
    Raised when the provider's public key document cannot be fetched.

    Reported as 503 so the provider retries the callback later.
    """

    transient = True

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail, service_name="ssv_keys", status_code=503)
