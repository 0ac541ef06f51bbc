from fastapi import HTTPException, Request

from app.services.wallet_core import WalletCore
from app.services.wallet_errors import (
    ComplianceError,
    LedgerRecordNotFound,
    PassValidationError,
    TransientProviderError,
    WalletDisabledError,
)


def get_wallet_core(request: Request) -> WalletCore:
    core = getattr(request.app.state, "wallet_core", None)
    if core is None:
        raise HTTPException(status_code=503, detail="Wallet core not initialised")
    return core


def wallet_http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ComplianceError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, LedgerRecordNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, WalletDisabledError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PassValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, TransientProviderError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal server error")
