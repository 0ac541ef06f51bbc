from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from app.deps.business import get_active_business
from app.deps.wallet import get_wallet_core, wallet_http_error
from app.schemas.enrollment import ProvisionPassRequest
from app.schemas.loyalty_card import CustomerLoyaltyCardOut
from app.schemas.retry_queue import RetryQueueAction
from app.services.privacy_audit import integration_compliance_report
from app.services.wallet_core import WalletCore
from app.services.wallet_errors import LedgerRecordNotFound, WalletError

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _load_scoped_record(core: WalletCore, record_id: str, active_business: str):
    try:
        record, program = core.store.get_record_with_program(record_id)
    except (LedgerRecordNotFound, ValueError):
        raise HTTPException(status_code=404, detail="Customer loyalty card not found")
    if program.business_id != active_business:
        raise HTTPException(status_code=403, detail="Access denied to this loyalty card")
    return record, program


@router.post("/passes", response_model=CustomerLoyaltyCardOut)
def create_pass(
    payload: ProvisionPassRequest,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    try:
        customer = core.store.get_customer(payload.customer_id)
        if customer.business_id != active_business:
            raise HTTPException(status_code=404, detail="Customer not found or access denied")
        return core.lifecycle.provision_pass(payload.customer_id, payload.loyalty_card_id)
    except (WalletError, LedgerRecordNotFound) as exc:
        raise wallet_http_error(exc)


@router.get("/passes/{record_id}")
def read_pass(
    record_id: str,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    record, program = _load_scoped_record(core, record_id, active_business)
    return {
        "customerLoyaltyCardId": str(record.id),
        "loyaltyCardName": program.name,
        "currentStamps": record.current_stamps,
        "stampsRequired": program.stamps_required,
        "status": record.status,
        "externalPassId": record.external_pass_id,
        "appleWalletUrl": record.wallet_url_apple,
        "googlePayUrl": record.wallet_url_google,
        "qrCode": record.qr_code,
    }


@router.post("/passes/{record_id}/sync")
def sync_pass(
    record_id: str,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    record, program = _load_scoped_record(core, record_id, active_business)
    if not program.wallet_enabled:
        raise HTTPException(status_code=400, detail="Wallet integration not enabled for this loyalty card")
    if not record.external_pass_id:
        raise HTTPException(status_code=404, detail="No wallet pass for this loyalty card")

    try:
        core.lifecycle.push_stamp_balance(record.id)
    except WalletError as exc:
        raise wallet_http_error(exc)
    return {"success": True, "message": "Wallet pass updated"}


@router.delete("/passes/{record_id}")
def delete_pass(
    record_id: str,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    record, _ = _load_scoped_record(core, record_id, active_business)
    if not record.external_pass_id:
        raise HTTPException(status_code=404, detail="No wallet pass for this loyalty card")

    try:
        core.lifecycle.revoke_pass(record.external_pass_id)
    except WalletError as exc:
        raise wallet_http_error(exc)
    core.store.clear_wallet(record.id)
    return {"success": True, "message": "Wallet pass deleted"}


# ============================================================
# RETRY QUEUE (operator)
# ============================================================

@router.get("/retry-queue")
def read_retry_queue(
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    stats = core.retry_queue.stats()
    if stats.total_items == 0:
        status, message = "idle", "No items in retry queue"
    else:
        status = "processing"
        message = (
            f"{stats.total_items} items in queue, {stats.pending_items} pending, "
            f"{stats.due_items} due, {stats.in_flight_items} in flight"
        )

    return {
        "success": True,
        "data": {
            "queueStats": stats.as_dict(),
            "items": [item.as_dict() for item in core.retry_queue.items()],
            "status": status,
            "processorRunning": core.retry_queue.is_running,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.post("/retry-queue")
def operate_retry_queue(
    payload: RetryQueueAction,
    active_business: str = Depends(get_active_business),
    core: WalletCore = Depends(get_wallet_core),
):
    if payload.action == "clear":
        removed = core.retry_queue.clear()
        return {"success": True, "data": {"removed": removed, "message": "Retry queue cleared"}}

    if not payload.queueItemId:
        raise HTTPException(status_code=400, detail="queueItemId is required for retry action")

    ok = core.retry_queue.manual_retry(payload.queueItemId)
    return {
        "success": ok,
        "data": {
            "queueItemId": payload.queueItemId,
            "message": "Manual retry successful" if ok else "Manual retry failed",
        },
    }


@router.get("/compliance")
def read_compliance_report(active_business: str = Depends(get_active_business)):
    return integration_compliance_report()
