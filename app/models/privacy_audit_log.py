import uuid
from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from app.db import Base


class PrivacyAuditLog(Base):
    __tablename__ = "privacy_audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    business_id = Column(String(64), nullable=True)

    # data_export | data_deletion | data_anonymization | consent_updated
    action = Column(String(30), nullable=False)

    # Pseudonymous reference, never the raw customer id.
    customer_reference = Column(String(40), nullable=False, index=True)
    performed_by = Column(String(200), nullable=False)

    details = Column(JSON, nullable=False, default=dict)
    compliance_notes = Column(JSON, nullable=False, default=list)

    created_at = Column(TIMESTAMP, nullable=False)
