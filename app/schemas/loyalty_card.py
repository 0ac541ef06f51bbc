from datetime import datetime
from typing import Optional

from uuid import UUID

from pydantic import BaseModel


class LoyaltyCardOut(BaseModel):
    id: UUID
    business_id: str

    name: str
    description: Optional[str] = None

    stamps_required: int
    reward_description: Optional[str] = None
    max_stamps_per_day: Optional[int] = None

    wallet_enabled: bool = True

    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CustomerLoyaltyCardOut(BaseModel):
    id: UUID
    customer_id: UUID
    loyalty_card_id: UUID

    current_stamps: int
    total_redeemed: int
    status: str

    external_pass_id: Optional[str] = None
    wallet_url_apple: Optional[str] = None
    wallet_url_google: Optional[str] = None
    qr_code: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
