from typing import Any, Literal, Optional

from uuid import UUID

from pydantic import BaseModel


class LgpdRequest(BaseModel):
    action: Literal["export", "delete", "anonymize"]
    customerId: UUID
    reason: Optional[str] = None
    requestedBy: Optional[str] = None


class LgpdResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None
