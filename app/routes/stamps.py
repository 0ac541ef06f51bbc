from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db import get_db
from app.deps.business import get_active_business
from app.deps.wallet import get_wallet_core
from app.schemas.stamp import AddStampsRequest, AddStampsResponse
from app.services.loyalty_service import award_stamps
from app.services.wallet_core import WalletCore


router = APIRouter(prefix="/stamps", tags=["stamps"])


@router.post("/add", response_model=AddStampsResponse)
def add_stamps(
    payload: AddStampsRequest,
    active_business: str = Depends(get_active_business),
    db: Session = Depends(get_db),
    core: WalletCore = Depends(get_wallet_core),
):
    card, sync = award_stamps(db, core.lifecycle, active_business, payload)
    return AddStampsResponse(
        customer_loyalty_card_id=card.id,
        current_stamps=card.current_stamps,
        status=card.status,
        total_redeemed=card.total_redeemed,
        wallet_sync=sync.outcome.value,
        retry_queue_item_id=sync.queue_item_id,
    )
