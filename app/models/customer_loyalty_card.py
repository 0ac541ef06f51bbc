import uuid
from sqlalchemy import Column, ForeignKey, Integer, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class CustomerLoyaltyCard(Base):
    __tablename__ = "customer_loyalty_cards"
    __table_args__ = (
        UniqueConstraint("customer_id", "loyalty_card_id", name="uq_customer_loyalty_cards_customer_card"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=False)
    loyalty_card_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_cards.id"), nullable=False)

    current_stamps = Column(Integer, nullable=False, default=0)
    total_redeemed = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False, default="active")
    # active | completed | expired

    # Only set once a wallet sync has succeeded.
    external_pass_id = Column(String(100), nullable=True)
    wallet_url_apple = Column(String(500), nullable=True)
    wallet_url_google = Column(String(500), nullable=True)
    qr_code = Column(String(500), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
