from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.loyalty_card import CustomerLoyaltyCardOut


class EnrollmentConsent(BaseModel):
    lgpd_accepted: bool = False


class EnrollmentRequest(BaseModel):
    loyalty_card_id: UUID
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    email: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    consent: EnrollmentConsent = Field(default_factory=EnrollmentConsent)


class EnrollmentResponse(BaseModel):
    success: bool = True
    customer_id: UUID
    card: CustomerLoyaltyCardOut
    wallet_provisioned: bool
    wallet_error: Optional[str] = None


class ProvisionPassRequest(BaseModel):
    customer_id: UUID
    loyalty_card_id: UUID
