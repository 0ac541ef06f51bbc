import uuid
from sqlalchemy import Boolean, Column, Integer, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class LoyaltyCard(Base):
    __tablename__ = "loyalty_cards"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    business_id = Column(String(64), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=True)

    stamps_required = Column(Integer, nullable=False)
    reward_description = Column(String(500), nullable=True)
    max_stamps_per_day = Column(Integer, nullable=True)

    wallet_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
