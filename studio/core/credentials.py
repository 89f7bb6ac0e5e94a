"""Session-scoped credential store with explicit change subscriptions."""

import threading
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class Credential:
    token: str | None = None
    validated: bool = False
    rejected: bool = False

    @property
    def present(self) -> bool:
        return bool(self.token)

    @property
    def usable(self) -> bool:
        """A client handle may be built from this credential."""
        return self.present and not self.rejected


CredentialListener = Callable[[Credential], None]


class CredentialStore:
    """Holds the single current API key. Never persisted beyond the process."""

    def __init__(self, token: str | None = None):
        self._lock = threading.RLock()
        self._credential = Credential(token=token or None)
        self._listeners: list[CredentialListener] = []

    @property
    def current(self) -> Credential:
        return self._credential

    def subscribe(self, listener: CredentialListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_credential(self, token: str, validated: bool = False) -> None:
        self._replace(Credential(token=token or None, validated=bool(token) and validated))
        logger.info("credential_set", **self.masked())

    def clear(self) -> None:
        self._replace(Credential())
        logger.info("credential_cleared")

    def mark_validated(self) -> None:
        with self._lock:
            current = self._credential
            if not current.present or (current.validated and not current.rejected):
                return
            updated = Credential(token=current.token, validated=True)
        self._replace(updated)

    def mark_invalid(self) -> None:
        with self._lock:
            current = self._credential
            if not current.present or current.rejected:
                return
            updated = Credential(token=current.token, validated=False, rejected=True)
        self._replace(updated)
        logger.warning("credential_rejected", **self.masked())

    def masked(self) -> dict:
        """Masked key info for debugging output."""
        token = self._credential.token
        return {
            "exists": bool(token),
            "masked": f"{token[:8]}...{token[-4:]}" if token else "None",
            "validated": self._credential.validated,
        }

    def _replace(self, credential: Credential) -> None:
        with self._lock:
            self._credential = credential
            listeners = list(self._listeners)
        for listener in listeners:
            listener(credential)
