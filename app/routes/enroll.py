from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.wallet import get_wallet_core, wallet_http_error
from app.schemas.enrollment import EnrollmentRequest, EnrollmentResponse
from app.schemas.loyalty_card import CustomerLoyaltyCardOut
from app.services.loyalty_service import enroll_customer
from app.services.wallet_core import WalletCore
from app.services.wallet_errors import ComplianceError


router = APIRouter(prefix="/enroll", tags=["enroll"])


@router.post("", response_model=EnrollmentResponse)
def enroll(
    payload: EnrollmentRequest,
    db: Session = Depends(get_db),
    core: WalletCore = Depends(get_wallet_core),
):
    try:
        customer, record, wallet_error = enroll_customer(
            db,
            core.lifecycle,
            payload,
            privacy_secret=core.settings.privacy_secret,
        )
    except ComplianceError as exc:
        raise wallet_http_error(exc)

    return EnrollmentResponse(
        customer_id=customer.id,
        card=CustomerLoyaltyCardOut.model_validate(record),
        wallet_provisioned=bool(record.external_pass_id),
        wallet_error=wallet_error,
    )
