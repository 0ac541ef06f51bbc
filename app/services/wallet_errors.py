from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict

import httpx


class SyncErrorKind(str, Enum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    COMPLIANCE = "compliance"
    PERMANENT = "permanent"


class WalletError(Exception):
    kind: SyncErrorKind = SyncErrorKind.PERMANENT

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.details = details or {}


class TransientProviderError(WalletError):
    """Provider unreachable or overloaded; the same request may succeed later."""

    kind = SyncErrorKind.TRANSIENT


class PassValidationError(WalletError):
    """Provider rejected the request itself; retrying cannot help."""

    kind = SyncErrorKind.VALIDATION


class ComplianceError(WalletError):
    kind = SyncErrorKind.COMPLIANCE


class WalletDisabledError(WalletError):
    kind = SyncErrorKind.VALIDATION


class LedgerRecordNotFound(LookupError):
    pass


@dataclass(frozen=True)
class PermanentFailure:
    """Terminal outcome of a retry item. Logged and counted, never raised."""

    queue_item_id: str
    target_record_id: str
    attempts: int
    last_error: str | None
    failed_at: datetime
    reason: str = "max_attempts"

    def as_log_extra(self) -> Dict[str, Any]:
        return {
            "queue_item_id": self.queue_item_id,
            "target_record_id": self.target_record_id,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "reason": self.reason,
            "failed_at": self.failed_at.isoformat(),
        }


_TRANSIENT_STATUS_CODES = {408, 425, 429}


def classify_http_error(exc: Exception, *, operation: str) -> WalletError:
    """Map an httpx failure onto the wallet error taxonomy."""

    if isinstance(exc, WalletError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        details = {"status_code": status, "operation": operation}
        try:
            body = exc.response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            details["provider_error"] = body.get("error")

        if status in _TRANSIENT_STATUS_CODES or status >= 500:
            return TransientProviderError(f"wallet provider unavailable for {operation}", details=details)
        return PassValidationError(f"wallet provider rejected {operation}", details=details)

    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return TransientProviderError(
            f"wallet provider unavailable for {operation}",
            details={"operation": operation, "error": type(exc).__name__},
        )

    return TransientProviderError(
        f"wallet provider {operation} failed",
        details={"operation": operation, "error": str(exc)},
    )
