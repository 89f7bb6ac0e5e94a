import asyncio

import pytest

from studio.core.exceptions import (
    CredentialRejectedError,
    ErrorKind,
    NetworkError,
    ProcessingFailedError,
    ProviderError,
    RequestCancelledError,
    UnknownError,
)
from studio.services.classifier import classify_failure, classify_kind


@pytest.mark.parametrize(
    "message,kind",
    [
        ("PERMISSION_DENIED: API key not valid", ErrorKind.credential_rejected),
        ("Missing or invalid API key", ErrorKind.credential_rejected),
        ("401 Unauthorized", ErrorKind.credential_rejected),
        ("Rate limit reached", ErrorKind.rate_limited),
        ("RESOURCE_EXHAUSTED: Quota exceeded", ErrorKind.rate_limited),
        ("Network connection failed: refused", ErrorKind.network_error),
        ("Failed to fetch", ErrorKind.network_error),
        ("Network request timed out.", ErrorKind.network_error),
        ("INVALID_ARGUMENT: Request contains an invalid argument.", ErrorKind.invalid_request),
        ("Bad Request", ErrorKind.invalid_request),
        ("PDF processing failed", ErrorKind.processing_failed),
        ("Something odd happened", ErrorKind.unknown),
    ],
)
def test_marker_classification(message, kind):
    assert classify_kind(ProviderError(message)) == kind


def test_classification_is_case_insensitive():
    assert classify_kind(RuntimeError("permission denied for project")) == ErrorKind.credential_rejected


def test_first_match_wins():
    # Mentions both a credential problem and a quota; the credential rule is checked first.
    assert classify_kind(ProviderError("API key quota exceeded")) == ErrorKind.credential_rejected
    # "invalid" alone would be an invalid request, but the API key marker comes first.
    assert classify_kind(ProviderError("API key not valid, invalid credentials")) == ErrorKind.credential_rejected


def test_code_is_considered():
    err = ProviderError("Request was refused", code="PERMISSION_DENIED", status=403)
    assert classify_kind(err) == ErrorKind.credential_rejected


@pytest.mark.parametrize(
    "status,kind",
    [
        (401, ErrorKind.credential_rejected),
        (403, ErrorKind.credential_rejected),
        (429, ErrorKind.rate_limited),
        (500, ErrorKind.unknown),
    ],
)
def test_status_without_error_body(status, kind):
    assert classify_kind(ProviderError(f"HTTP {status}: Forbidden", status=status)) == kind


def test_cancellation_detected():
    assert classify_kind(asyncio.CancelledError()) == ErrorKind.cancelled
    assert classify_kind(RuntimeError("Request was cancelled")) == ErrorKind.cancelled


def test_classify_failure_builds_user_message_and_keeps_reason():
    error = classify_failure(ProviderError("PERMISSION_DENIED: API key not valid"))
    assert isinstance(error, CredentialRejectedError)
    assert error.message != "PERMISSION_DENIED: API key not valid"
    assert error.details["reason"] == "PERMISSION_DENIED: API key not valid"


def test_classify_failure_passes_studio_errors_through():
    original = ProcessingFailedError("No audio data received from the AI model.")
    assert classify_failure(original) is original


def test_classify_failure_never_reclassifies():
    # The message mentions "network", but the kind was already decided.
    original = ProcessingFailedError("network diagram could not be rendered")
    assert classify_failure(original).kind == ErrorKind.processing_failed


def test_classify_failure_types():
    assert isinstance(classify_failure(ProviderError("Network error: reset")), NetworkError)
    assert isinstance(classify_failure(RuntimeError("cancelled by user")), RequestCancelledError)
    assert isinstance(classify_failure(ValueError("boom")), UnknownError)
