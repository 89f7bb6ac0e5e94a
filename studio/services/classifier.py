"""Failure classification: maps a raw exception onto the error taxonomy."""

import asyncio

from studio.core.exceptions import (
    CredentialRejectedError,
    ErrorKind,
    InvalidRequestError,
    NetworkError,
    ProcessingFailedError,
    RateLimitedError,
    RequestCancelledError,
    StudioError,
    UnknownError,
)

# ── Markers, checked in order; first match wins ──────────────────────────────

CANCELLED_MARKERS = ("cancelled",)

CLASSIFICATION_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (
        ErrorKind.credential_rejected,
        ("api key", "permission_denied", "permission denied", "unauthenticated", "unauthorized"),
    ),
    (ErrorKind.rate_limited, ("rate limit", "quota", "resource_exhausted", "too many requests")),
    (ErrorKind.network_error, ("network", "fetch", "timed out", "timeout", "connection")),
    (ErrorKind.invalid_request, ("invalid", "bad request")),
    (
        ErrorKind.processing_failed,
        ("processing failed", "failed_precondition", "instead of", "no data received", "declined"),
    ),
)

# HTTP statuses that identify a kind on their own, checked before the markers.
STATUS_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.credential_rejected,
    403: ErrorKind.credential_rejected,
    429: ErrorKind.rate_limited,
}

_ERROR_TYPES: dict[ErrorKind, type[StudioError]] = {
    ErrorKind.credential_rejected: CredentialRejectedError,
    ErrorKind.rate_limited: RateLimitedError,
    ErrorKind.network_error: NetworkError,
    ErrorKind.invalid_request: InvalidRequestError,
    ErrorKind.processing_failed: ProcessingFailedError,
}


def _failure_text(exc: BaseException) -> str:
    parts = [str(exc)]
    code = getattr(exc, "code", None)
    if code:
        parts.append(str(code))
    return " ".join(parts).lower()


def classify_kind(exc: BaseException) -> ErrorKind:
    """Return the taxonomy kind for a failure without building an error."""
    if isinstance(exc, StudioError):
        return exc.kind
    if isinstance(exc, asyncio.CancelledError):
        return ErrorKind.cancelled

    text = _failure_text(exc)
    if any(marker in text for marker in CANCELLED_MARKERS):
        return ErrorKind.cancelled
    status = getattr(exc, "status", None)
    if status in STATUS_KINDS:
        return STATUS_KINDS[status]
    for kind, markers in CLASSIFICATION_RULES:
        if any(marker in text for marker in markers):
            return kind
    return ErrorKind.unknown


def classify_failure(exc: BaseException) -> StudioError:
    """Classify a raw failure once. Already-classified errors pass through unchanged."""
    if isinstance(exc, StudioError):
        return exc

    kind = classify_kind(exc)
    details = {"reason": str(exc)} if str(exc) else {}
    if kind == ErrorKind.cancelled:
        return RequestCancelledError(details=details)
    error_type = _ERROR_TYPES.get(kind, UnknownError)
    return error_type(details=details)
