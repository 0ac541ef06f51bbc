from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.customer_loyalty_card import CustomerLoyaltyCard
from app.models.loyalty_card import LoyaltyCard
from app.models.privacy_audit_log import PrivacyAuditLog
from app.schemas.customer import CustomerOut
from app.schemas.loyalty_card import CustomerLoyaltyCardOut, LoyaltyCardOut
from app.services.privacy_audit import AuditEntry
from app.services.wallet_errors import LedgerRecordNotFound


SessionFactory = Callable[[], Session]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_uuid(value):
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class LedgerStore:
    """Get/update access to the loyalty ledger for the wallet core.

    Each call runs in its own short session so it can be used from the retry
    sweep thread. Results are detached pydantic snapshots.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------
    # reads
    # ------------------------------------------------------------

    def get_customer(self, customer_id) -> CustomerOut:
        with self._session_factory() as db:
            customer = db.get(Customer, _as_uuid(customer_id))
            if not customer:
                raise LedgerRecordNotFound(f"Customer not found: {customer_id}")
            return CustomerOut.model_validate(customer)

    def get_loyalty_card(self, loyalty_card_id) -> LoyaltyCardOut:
        with self._session_factory() as db:
            card = db.get(LoyaltyCard, _as_uuid(loyalty_card_id))
            if not card:
                raise LedgerRecordNotFound(f"Loyalty card not found: {loyalty_card_id}")
            return LoyaltyCardOut.model_validate(card)

    def get_record(self, record_id) -> CustomerLoyaltyCardOut:
        with self._session_factory() as db:
            record = db.get(CustomerLoyaltyCard, _as_uuid(record_id))
            if not record:
                raise LedgerRecordNotFound(f"Customer loyalty card not found: {record_id}")
            return CustomerLoyaltyCardOut.model_validate(record)

    def get_record_with_program(self, record_id) -> Tuple[CustomerLoyaltyCardOut, LoyaltyCardOut]:
        with self._session_factory() as db:
            record = db.get(CustomerLoyaltyCard, _as_uuid(record_id))
            if not record:
                raise LedgerRecordNotFound(f"Customer loyalty card not found: {record_id}")
            program = db.get(LoyaltyCard, record.loyalty_card_id)
            if not program:
                raise LedgerRecordNotFound(f"Loyalty card not found: {record.loyalty_card_id}")
            return CustomerLoyaltyCardOut.model_validate(record), LoyaltyCardOut.model_validate(program)

    def find_record(self, customer_id, loyalty_card_id) -> CustomerLoyaltyCardOut | None:
        with self._session_factory() as db:
            record = (
                db.query(CustomerLoyaltyCard)
                .filter(
                    CustomerLoyaltyCard.customer_id == _as_uuid(customer_id),
                    CustomerLoyaltyCard.loyalty_card_id == _as_uuid(loyalty_card_id),
                )
                .first()
            )
            return CustomerLoyaltyCardOut.model_validate(record) if record else None

    def list_customer_records(self, customer_id) -> List[Tuple[CustomerLoyaltyCardOut, LoyaltyCardOut]]:
        with self._session_factory() as db:
            rows = (
                db.query(CustomerLoyaltyCard, LoyaltyCard)
                .join(LoyaltyCard, LoyaltyCard.id == CustomerLoyaltyCard.loyalty_card_id)
                .filter(CustomerLoyaltyCard.customer_id == _as_uuid(customer_id))
                .order_by(CustomerLoyaltyCard.created_at.asc())
                .all()
            )
            return [
                (CustomerLoyaltyCardOut.model_validate(r), LoyaltyCardOut.model_validate(p))
                for r, p in rows
            ]

    # ------------------------------------------------------------
    # writes
    # ------------------------------------------------------------

    def get_or_create_record(self, customer_id, loyalty_card_id) -> CustomerLoyaltyCardOut:
        existing = self.find_record(customer_id, loyalty_card_id)
        if existing:
            return existing

        with self._session_factory() as db:
            record = CustomerLoyaltyCard(
                customer_id=_as_uuid(customer_id),
                loyalty_card_id=_as_uuid(loyalty_card_id),
                current_stamps=0,
                total_redeemed=0,
                status="active",
                qr_code=f"{customer_id}-{loyalty_card_id}-{int(time.time() * 1000)}",
            )
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                # Concurrent enrollment won the unique constraint.
                db.rollback()
                found = self.find_record(customer_id, loyalty_card_id)
                if found is None:
                    raise
                return found
            db.refresh(record)
            return CustomerLoyaltyCardOut.model_validate(record)

    def attach_pass(self, record_id, *, external_pass_id: str, apple_url, google_url, qr_code) -> CustomerLoyaltyCardOut:
        with self._session_factory() as db:
            record = db.get(CustomerLoyaltyCard, _as_uuid(record_id))
            if not record:
                raise LedgerRecordNotFound(f"Customer loyalty card not found: {record_id}")
            record.external_pass_id = external_pass_id
            record.wallet_url_apple = apple_url
            record.wallet_url_google = google_url
            if qr_code:
                record.qr_code = qr_code
            record.updated_at = _utcnow()
            db.commit()
            db.refresh(record)
            return CustomerLoyaltyCardOut.model_validate(record)

    def mark_completed(self, record_id) -> CustomerLoyaltyCardOut:
        with self._session_factory() as db:
            record = db.get(CustomerLoyaltyCard, _as_uuid(record_id))
            if not record:
                raise LedgerRecordNotFound(f"Customer loyalty card not found: {record_id}")
            if record.status != "completed":
                record.status = "completed"
                record.updated_at = _utcnow()
                db.commit()
                db.refresh(record)
            return CustomerLoyaltyCardOut.model_validate(record)

    def clear_wallet(self, record_id) -> None:
        with self._session_factory() as db:
            record = db.get(CustomerLoyaltyCard, _as_uuid(record_id))
            if not record:
                raise LedgerRecordNotFound(f"Customer loyalty card not found: {record_id}")
            record.external_pass_id = None
            record.wallet_url_apple = None
            record.wallet_url_google = None
            record.updated_at = _utcnow()
            db.commit()

    def anonymize_customer(self, customer_id, *, name: str, phone: str, email: str | None) -> CustomerOut:
        with self._session_factory() as db:
            customer = db.get(Customer, _as_uuid(customer_id))
            if not customer:
                raise LedgerRecordNotFound(f"Customer not found: {customer_id}")
            customer.name = name
            customer.phone = phone
            customer.email = email
            customer.birthdate = None
            customer.custom_fields = {}
            customer.updated_at = _utcnow()
            db.commit()
            db.refresh(customer)
            return CustomerOut.model_validate(customer)

    def save_audit_entry(self, entry: AuditEntry, *, business_id: str | None = None) -> None:
        with self._session_factory() as db:
            db.add(
                PrivacyAuditLog(
                    business_id=business_id,
                    action=entry.action.value,
                    customer_reference=entry.customer_reference,
                    performed_by=entry.performed_by,
                    details=entry.model_dump(mode="json")["details"],
                    compliance_notes=list(entry.compliance_notes),
                    created_at=entry.timestamp,
                )
            )
            db.commit()
