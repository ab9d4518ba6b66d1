"""
Error taxonomy for the recognition and validation pipeline.

Transport-class failures (network, timeout, 408/429/5xx) are retryable;
auth and invalid-request failures are fatal. LowConfidenceError is only ever
synthesized locally, RateLimitExceeded is raised before any network call.
"""

from typing import Optional


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class TutorError(Exception):
    """Base class for every pipeline error."""

    kind = "unknown"
    retryable = False

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class NetworkError(TutorError):
    kind = "network_error"
    retryable = True


class AuthError(TutorError):
    kind = "auth_error"


class InvalidRequestError(TutorError):
    kind = "invalid_request"


class TimeoutError(TutorError):
    kind = "timeout"
    retryable = True


class LowConfidenceError(TutorError):
    kind = "low_confidence"


class RateLimitExceeded(TutorError):
    kind = "rate_limit_exceeded"

    def __init__(self, message: str, reset_in: int = 0):
        super().__init__(message, status_code=429)
        self.reset_in = reset_in


class ProblemNotFound(TutorError):
    kind = "problem_not_found"

    def __init__(self, problem_id: str):
        super().__init__(f"Problem not found: {problem_id}", status_code=404)
        self.problem_id = problem_id


class UnknownError(TutorError):
    kind = "unknown"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message, status_code=status_code, cause=cause)
        # Server-side failures are worth another attempt
        self.retryable = status_code in RETRYABLE_STATUS_CODES


def error_from_status(
    status_code: Optional[int],
    detail: str = "",
    cause: Optional[BaseException] = None,
    service: str = "API"
) -> TutorError:
    """
    Map a transport outcome to the error taxonomy.

    Args:
        status_code: HTTP status, or None when no response was received
        detail: Extra text (status reason / body excerpt) for the message
        cause: Original exception for diagnostics
        service: Service name used in messages

    Returns:
        The classified error (not raised)
    """
    if status_code is None:
        return NetworkError(f"Network error: Unable to reach {service}", cause=cause)

    if status_code in (401, 403):
        return AuthError(
            "Authentication failed: Check your API keys",
            status_code=status_code,
            cause=cause
        )

    if status_code == 400:
        return InvalidRequestError(
            "Invalid request: Check request data format",
            status_code=status_code,
            cause=cause
        )

    if status_code in (408, 504):
        return TimeoutError(
            "Request timeout: API took too long to respond",
            status_code=status_code,
            cause=cause
        )

    message = f"{service} error: {status_code}"
    if detail:
        message = f"{message} - {detail}"
    return UnknownError(message, status_code=status_code, cause=cause)


def is_retryable(error: BaseException) -> bool:
    """Retry predicate used by the validation service calls."""
    if isinstance(error, TutorError):
        return error.retryable
    return False
