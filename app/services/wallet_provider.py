from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Protocol

import httpx

from app.config import WalletSettings
from app.services.wallet_errors import (
    PassValidationError,
    WalletError,
    classify_http_error,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PassHandle:
    id: str
    apple_url: str | None
    google_url: str | None
    qr_code: str | None


class WalletProvider(Protocol):
    def create_pass(self, payload: Dict[str, Any]) -> PassHandle: ...

    def update_pass(self, pass_id: str, fields: Dict[str, Any]) -> None: ...

    def delete_pass(self, pass_id: str) -> None: ...

    def close(self) -> None: ...


# ============================================================
# HTTP provider (PassKit-style REST members API)
# ============================================================

class HttpWalletProvider:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout_seconds,
        )

    def _request(self, method: str, path: str, *, operation: str, json: Dict[str, Any] | None = None) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=json)
            response.raise_for_status()
            return response
        except httpx.HTTPError as exc:
            error = classify_http_error(exc, operation=operation)
            logger.warning(
                "wallet provider call failed",
                extra={"operation": operation, "kind": error.kind.value, "details": error.details},
            )
            raise error from exc

    def create_pass(self, payload: Dict[str, Any]) -> PassHandle:
        response = self._request("POST", "/members", operation="pass creation", json=payload)
        body = response.json()
        if not body.get("id"):
            raise PassValidationError("wallet provider returned no pass id", details={"operation": "pass creation"})
        return PassHandle(
            id=str(body["id"]),
            apple_url=body.get("appleWalletUrl"),
            google_url=body.get("googlePayUrl"),
            qr_code=body.get("qrCode"),
        )

    def update_pass(self, pass_id: str, fields: Dict[str, Any]) -> None:
        self._request("PUT", f"/members/{pass_id}", operation="pass update", json={"id": pass_id, **fields})

    def delete_pass(self, pass_id: str) -> None:
        self._request("DELETE", f"/members/{pass_id}", operation="pass deletion")

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


# ============================================================
# Local stub (development / tests)
# ============================================================

class StubWalletProvider:
    """In-memory provider. Failures can be scripted with ``fail_next``."""

    def __init__(self, *, base_url: str = "https://wallet.local") -> None:
        self._base_url = base_url.rstrip("/")
        self._lock = threading.Lock()
        self._failures: Deque[WalletError] = deque()
        self.passes: Dict[str, Dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []

    def fail_next(self, error: WalletError, times: int = 1) -> None:
        with self._lock:
            for _ in range(times):
                self._failures.append(error)

    def _maybe_fail(self, operation: str, pass_id: str | None) -> None:
        with self._lock:
            self.calls.append((operation, pass_id))
            if self._failures:
                raise self._failures.popleft()

    def create_pass(self, payload: Dict[str, Any]) -> PassHandle:
        self._maybe_fail("create", None)
        external_id = payload.get("externalId")
        if not external_id:
            raise PassValidationError("externalId is required", details={"operation": "pass creation"})

        pass_id = f"stub-pass-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self.passes[pass_id] = {"payload": dict(payload), "fields": dict(payload.get("fields") or {})}
        logger.info("stub wallet pass created", extra={"pass_id": pass_id, "external_id": external_id})
        return PassHandle(
            id=pass_id,
            apple_url=f"{self._base_url}/apple/{external_id}",
            google_url=f"{self._base_url}/google/{external_id}",
            qr_code=f"qr-{external_id}",
        )

    def update_pass(self, pass_id: str, fields: Dict[str, Any]) -> None:
        self._maybe_fail("update", pass_id)
        with self._lock:
            stored = self.passes.get(pass_id)
            if stored is None:
                raise PassValidationError("unknown pass", details={"operation": "pass update", "pass_id": pass_id})
            if "fields" in fields:
                stored["fields"].update(fields["fields"])
            if "person" in fields:
                stored["payload"]["person"] = dict(fields["person"])
            stored["last_update"] = dict(fields)
        logger.info("stub wallet pass updated", extra={"pass_id": pass_id, "fields": sorted(fields.get("fields", {}))})

    def delete_pass(self, pass_id: str) -> None:
        self._maybe_fail("delete", pass_id)
        with self._lock:
            self.passes.pop(pass_id, None)
        logger.info("stub wallet pass deleted", extra={"pass_id": pass_id})

    def close(self) -> None:
        return None


def build_wallet_provider(settings: WalletSettings) -> WalletProvider:
    if settings.provider == "http":
        logger.info("using http wallet provider", extra={"provider_url": settings.provider_url})
        return HttpWalletProvider(
            settings.provider_url,
            api_key=settings.provider_api_key,
            timeout_seconds=settings.provider_timeout_seconds,
        )
    logger.info("using stub wallet provider")
    return StubWalletProvider()

