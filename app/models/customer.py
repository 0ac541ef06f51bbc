import uuid
from sqlalchemy import Boolean, Column, Date, Integer, JSON, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.db import Base


class Customer(Base):
    __tablename__ = "customers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    business_id = Column(String(64), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    phone = Column(String(32), nullable=False)
    email = Column(String(200), nullable=True)
    birthdate = Column(Date, nullable=True)

    custom_fields = Column(JSON, nullable=False, default=dict)

    lgpd_consent = Column(Boolean, nullable=False, default=False)
    consent_date = Column(TIMESTAMP, nullable=True)

    enrollment_date = Column(TIMESTAMP, server_default=func.now())
    last_visit = Column(TIMESTAMP, nullable=True)
    total_visits = Column(Integer, nullable=False, default=0)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
