"""Request lifecycle manager: one generic engine behind every AI feature.

Each feature supplies an ``invoke_fn(backend, request, token)``. The manager
owns readiness, single-flight cancellation and failure classification around it.

State transitions are guarded by a per-instance lock so credential
callbacks may arrive from any thread. Awaits never happen under the lock.
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, TypeVar

import structlog

from studio.core.credentials import Credential, CredentialStore
from studio.core.exceptions import (
    CredentialMissingError,
    ErrorKind,
    RequestCancelledError,
    StudioError,
)
from studio.services.classifier import classify_failure
from studio.services.history import HistoryEntry, HistoryLog
from studio.services.provider.base import BackendFactory, ProviderBackend

logger = structlog.get_logger()

RequestT = TypeVar("RequestT")
ResponseT = TypeVar("ResponseT")


class CancelToken:
    """Cooperative cancellation signal for one invocation."""

    def __init__(self):
        self._cancelled = False
        self._task: asyncio.Future | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: asyncio.Future) -> None:
        self._task = task
        if self._cancelled:
            task.cancel()

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError()


InvokeFn = Callable[[ProviderBackend, RequestT, CancelToken], Awaitable[ResponseT]]


@dataclass(frozen=True)
class ServiceState:
    ready: bool = False
    generating: bool = False
    last_error: StudioError | None = None


class RequestManager(Generic[RequestT, ResponseT]):
    """Mediates every outbound call for one feature. At most one call in flight."""

    def __init__(
        self,
        name: str,
        credentials: CredentialStore,
        invoke_fn: InvokeFn,
        backend_factory: BackendFactory,
    ):
        self.name = name
        self._credentials = credentials
        self._invoke_fn = invoke_fn
        self._backend_factory = backend_factory
        self._lock = threading.RLock()

        self._backend: ProviderBackend | None = None
        self._backend_token: str | None = None
        self._ready = False
        self._generating = False
        self._last_error: StudioError | None = CredentialMissingError()
        self._token: CancelToken | None = None
        self._history: HistoryLog[RequestT, ResponseT] = HistoryLog()

        self._unsubscribe = credentials.subscribe(self._on_credential_change)
        self._on_credential_change(credentials.current)

    # ── State ────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ServiceState:
        with self._lock:
            return ServiceState(ready=self._ready, generating=self._generating, last_error=self._last_error)

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def generating(self) -> bool:
        return self._generating

    @property
    def last_error(self) -> StudioError | None:
        return self._last_error

    @property
    def history(self) -> HistoryLog[RequestT, ResponseT]:
        return self._history

    def clear_error(self) -> None:
        with self._lock:
            self._last_error = None

    def remove_history(self, index: int) -> None:
        self._history.remove(index)

    def clear_history(self) -> None:
        self._history.clear()

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def cancel(self) -> None:
        """Stop the in-flight call, if any. Idempotent."""
        with self._lock:
            self._cancel_locked()

    def close(self) -> None:
        """Unsubscribe from credential changes and drop any in-flight call."""
        self._unsubscribe()
        with self._lock:
            self._cancel_locked()
            self._backend = None
            self._backend_token = None
            self._ready = False

    def _cancel_locked(self) -> None:
        token = self._token
        if token is None:
            return
        token.cancel()
        self._token = None
        self._generating = False
        logger.debug("request_cancelled", feature=self.name)

    def _on_credential_change(self, credential: Credential) -> None:
        with self._lock:
            if credential.usable:
                if self._backend is not None and credential.token == self._backend_token:
                    return
                try:
                    backend = self._backend_factory(credential.token)
                except Exception:
                    logger.exception("client_init_failed", feature=self.name)
                    self._backend = None
                    self._backend_token = None
                    self._ready = False
                    self._last_error = CredentialMissingError(
                        "Failed to initialize the AI service. Please check your API key."
                    )
                    return
                self._backend = backend
                self._backend_token = credential.token
                self._ready = True
                self._last_error = None
                logger.info("manager_ready", feature=self.name)
                return

            self._backend = None
            self._backend_token = None
            self._ready = False
            if not credential.present:
                self._cancel_locked()
                self._last_error = CredentialMissingError()
                logger.info("manager_uninitialized", feature=self.name)
            elif self._last_error is None:
                self._last_error = CredentialMissingError()

    # ── Invocation ───────────────────────────────────────────────────────────

    async def invoke(self, request: RequestT) -> ResponseT:
        """Run one call, superseding any call already in flight on this manager."""
        with self._lock:
            backend = self._backend
            if not self._ready or backend is None:
                error = CredentialMissingError()
                self._last_error = error
                logger.info("request_rejected", feature=self.name, reason=error.code)
                raise error
            self._cancel_locked()
            token = CancelToken()
            self._token = token
            self._generating = True
            self._last_error = None

        start = time.monotonic()
        logger.info("request_started", feature=self.name)
        task = asyncio.ensure_future(self._run(backend, request, token))
        token.bind(task)

        try:
            response = await task
        except asyncio.CancelledError:
            if not token.cancelled:
                # The awaiting caller itself was cancelled.
                token.cancel()
                self._finish(token)
                raise
            self._finish(token)
            logger.info("request_superseded", feature=self.name)
            raise RequestCancelledError()
        except Exception as exc:
            error = self._record_failure(token, exc, start)
            if error is exc:
                raise
            raise error from exc

        with self._lock:
            if token.cancelled or self._token is not token:
                logger.info("request_superseded", feature=self.name, resolved=True)
                raise RequestCancelledError()
            self._history.append(
                HistoryEntry(
                    request=request,
                    response=response,
                    model=getattr(response, "model", self.name),
                    timestamp=datetime.now(timezone.utc),
                )
            )
            self._token = None
            self._generating = False

        self._credentials.mark_validated()
        logger.info(
            "request_completed",
            feature=self.name,
            latency_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return response

    async def _run(self, backend: ProviderBackend, request: RequestT, token: CancelToken) -> ResponseT:
        token.raise_if_cancelled()
        response = await self._invoke_fn(backend, request, token)
        token.raise_if_cancelled()
        return response

    def _finish(self, token: CancelToken) -> None:
        with self._lock:
            if self._token is token:
                self._token = None
                self._generating = False

    def _record_failure(self, token: CancelToken, exc: Exception, start: float) -> StudioError:
        """Classify a failure and record it, unless the call was superseded."""
        error = classify_failure(exc)

        with self._lock:
            current = self._token is token and not token.cancelled
            if error.kind == ErrorKind.cancelled or not current:
                if self._token is token:
                    self._token = None
                    self._generating = False
                logger.info("request_superseded", feature=self.name)
                return exc if isinstance(exc, RequestCancelledError) else RequestCancelledError()
            self._last_error = error
            self._token = None
            self._generating = False

        if error.kind == ErrorKind.credential_rejected:
            self._credentials.mark_invalid()

        logger.warning(
            "request_failed",
            feature=self.name,
            kind=error.code,
            reason=error.details.get("reason"),
            latency_ms=round((time.monotonic() - start) * 1000, 1),
        )
        return error
