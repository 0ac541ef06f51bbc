import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from app.deps.business import get_active_business
from app.deps.wallet import get_wallet_core
from app.schemas.lgpd import LgpdRequest, LgpdResponse
from app.services.wallet_core import WalletCore
from app.services.wallet_errors import LedgerRecordNotFound


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lgpd", tags=["lgpd"])


def _check_customer(core: WalletCore, customer_id, active_business: str):
    try:
        customer = core.store.get_customer(customer_id)
    except LedgerRecordNotFound:
        customer = None
    if not customer or customer.business_id != active_business:
        raise HTTPException(status_code=404, detail="Customer not found or access denied")
    return customer


@router.post("/wallet-data", response_model=LgpdResponse)
def handle_wallet_data_request(
    payload: LgpdRequest,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    customer = _check_customer(core, payload.customerId, active_business)
    requested_by = payload.requestedBy or "operator"

    if payload.action == "export":
        result = core.lgpd.export_wallet_data(customer.id, requested_by=requested_by, reason=payload.reason)
    elif payload.action == "delete":
        result = core.lgpd.delete_wallet_data(customer.id, requested_by=requested_by, reason=payload.reason)
    else:
        result = core.lgpd.anonymize_wallet_data(customer.id, requested_by=requested_by, reason=payload.reason)

    response = LgpdResponse(
        success=result.success,
        data=result.data,
        message=result.message,
        error=None if result.success else "Wallet provider errors",
        details="; ".join(result.errors) or None,
    )
    if not result.success:
        logger.error("LGPD request completed with errors", extra={"action": result.action, "errors": len(result.errors)})
        return JSONResponse(status_code=502, content=response.model_dump())
    return response


@router.get("/wallet-data")
def read_wallet_data_summary(
    customerId: str,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    try:
        customer = _check_customer(core, customerId, active_business)
    except ValueError:
        raise HTTPException(status_code=400, detail="customerId is not a valid id")
    return {"success": True, "data": core.lgpd.summarize_wallet_data(customer.id)}
