from datetime import datetime, timezone
from enum import Enum


class ErrorKind(str, Enum):
    credential_missing = "credential_missing"
    credential_rejected = "credential_rejected"
    rate_limited = "rate_limited"
    network_error = "network_error"
    invalid_request = "invalid_request"
    processing_failed = "processing_failed"
    cancelled = "cancelled"
    storage_unavailable = "storage_unavailable"
    conversation_not_found = "conversation_not_found"
    unknown = "unknown"


class StudioError(Exception):
    """Base exception for classified studio failures.

    ``message`` is always the short user-facing text; the raw provider or
    storage reason, when there is one, travels in ``details["reason"]``.
    """

    kind: ErrorKind = ErrorKind.unknown

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        details: dict | None = None,
    ):
        if kind is not None:
            self.kind = kind
        self.code = self.kind.value
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(message)

    def to_dict(self) -> dict:
        result = {
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp.isoformat(),
            }
        }
        if self.details:
            result["error"]["details"] = self.details
        return result


class CredentialMissingError(StudioError):
    kind = ErrorKind.credential_missing

    def __init__(self, message: str = "Please provide your API key to continue.", details: dict | None = None):
        super().__init__(message, details=details)


class CredentialRejectedError(StudioError):
    kind = ErrorKind.credential_rejected

    def __init__(
        self, message: str = "Invalid or unauthorized API key. Please check your API key.", details: dict | None = None
    ):
        super().__init__(message, details=details)


class RateLimitedError(StudioError):
    kind = ErrorKind.rate_limited

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.", details: dict | None = None):
        super().__init__(message, details=details)


class NetworkError(StudioError):
    kind = ErrorKind.network_error

    def __init__(
        self, message: str = "Network error. Please check your internet connection.", details: dict | None = None
    ):
        super().__init__(message, details=details)


class InvalidRequestError(StudioError):
    kind = ErrorKind.invalid_request

    def __init__(
        self, message: str = "Invalid request. Please check your input parameters.", details: dict | None = None
    ):
        super().__init__(message, details=details)


class ProcessingFailedError(StudioError):
    kind = ErrorKind.processing_failed

    def __init__(
        self,
        message: str = "The AI model could not produce a usable result. Try rephrasing your request.",
        details: dict | None = None,
    ):
        super().__init__(message, details=details)


class RequestCancelledError(StudioError):
    """Raised to the caller of a superseded or stopped call. Never shown to a user."""

    kind = ErrorKind.cancelled

    def __init__(self, message: str = "Request was cancelled.", details: dict | None = None):
        super().__init__(message, details=details)


class StorageUnavailableError(StudioError):
    kind = ErrorKind.storage_unavailable

    def __init__(
        self, message: str = "Conversation storage is unavailable. Please try again.", details: dict | None = None
    ):
        super().__init__(message, details=details)


class ConversationNotFoundError(StudioError):
    kind = ErrorKind.conversation_not_found

    def __init__(self, message: str = "Conversation not found.", details: dict | None = None):
        super().__init__(message, details=details)


class UnknownError(StudioError):
    kind = ErrorKind.unknown

    def __init__(self, message: str = "An unexpected error occurred. Please try again.", details: dict | None = None):
        super().__init__(message, details=details)


class ProviderError(Exception):
    """Raw failure reported by the AI provider, before classification."""

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        self.code = code
        self.status = status
        super().__init__(message)
