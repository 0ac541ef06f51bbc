import uuid
from sqlalchemy import Column, ForeignKey, Integer, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class StampTransaction(Base):
    __tablename__ = "stamp_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    customer_loyalty_card_id = Column(
        UUID(as_uuid=True),
        ForeignKey("customer_loyalty_cards.id"),
        nullable=False,
    )

    stamps_added = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False, default="manual")  # manual / scan / import
    notes = Column(String(500), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
