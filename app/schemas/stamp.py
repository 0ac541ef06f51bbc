from typing import Optional

from uuid import UUID

from pydantic import BaseModel, Field


class AddStampsRequest(BaseModel):
    customer_id: UUID
    loyalty_card_id: Optional[UUID] = None
    stamps: int = Field(gt=0)
    notes: Optional[str] = None


class AddStampsResponse(BaseModel):
    ok: bool = True
    customer_loyalty_card_id: UUID
    current_stamps: int
    status: str
    total_redeemed: int
    wallet_sync: str
    retry_queue_item_id: Optional[str] = None
