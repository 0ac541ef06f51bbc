from datetime import date, datetime
from typing import Any, Dict, Optional

from uuid import UUID

from pydantic import BaseModel, Field


class CustomerOut(BaseModel):
    id: UUID
    business_id: str

    name: str
    phone: str
    email: Optional[str] = None
    birthdate: Optional[date] = None

    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    lgpd_consent: bool = False
    consent_date: Optional[datetime] = None

    enrollment_date: Optional[datetime] = None
    last_visit: Optional[datetime] = None
    total_visits: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
