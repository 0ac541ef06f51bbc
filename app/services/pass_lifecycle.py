from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from app.services.ledger_store import LedgerStore
from app.services.privacy import (
    build_privacy_envelope,
    create_customer_reference,
    envelope_to_person,
)
from app.services.privacy_audit import (
    AuditAction,
    ComplianceSubject,
    create_audit_entry,
    validate_compliance,
)
from app.services.wallet_errors import (
    ComplianceError,
    PassValidationError,
    TransientProviderError,
    WalletDisabledError,
)
from app.services.wallet_provider import WalletProvider
from app.schemas.customer import CustomerOut
from app.schemas.loyalty_card import CustomerLoyaltyCardOut, LoyaltyCardOut


logger = logging.getLogger(__name__)

BALANCE_LABEL = "Selos Coletados"
REWARD_LABEL = "Recompensa"
STATUS_LABEL = "Status"
REWARD_AVAILABLE_TEXT = "Recompensa Disponível!"
ANONYMIZED_DISPLAY_NAME = "Cliente"


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    QUEUED = "queued"
    SKIPPED = "skipped"
    REJECTED = "rejected"


@dataclass
class StampSyncResult:
    record_id: str
    current_stamps: int
    stamps_required: int
    status: str
    outcome: SyncOutcome
    queue_item_id: Optional[str] = None
    error: Optional[str] = None


def personal_data_fields(customer: CustomerOut) -> list[str]:
    stored = ["name", "phone"]
    if customer.email:
        stored.append("email")
    if customer.birthdate:
        stored.append("birthdate")
    if customer.custom_fields:
        stored.append("custom_fields")
    return stored


def build_balance_fields(record: CustomerLoyaltyCardOut, program: LoyaltyCardOut) -> Dict[str, Any]:
    completed = record.current_stamps >= program.stamps_required
    fields: Dict[str, Any] = {
        "balance": {
            "value": f"{record.current_stamps}/{program.stamps_required}",
            "label": BALANCE_LABEL,
        },
    }
    if completed:
        fields["status"] = {"value": REWARD_AVAILABLE_TEXT, "label": STATUS_LABEL}
    return {"fields": fields, "rewardAvailable": completed}


class PassLifecycleManager:
    """Provisioning, stamp sync and revocation of external wallet passes."""

    def __init__(
        self,
        store: LedgerStore,
        provider: WalletProvider,
        *,
        privacy_secret: str,
        retry_queue=None,
        retention_days: int = 2555,
        dormant_days: int = 365,
    ) -> None:
        self.store = store
        self.provider = provider
        self.retry_queue = retry_queue
        self._secret = privacy_secret
        self._retention_days = retention_days
        self._dormant_days = dormant_days

    def _customer_ref(self, customer_id) -> str:
        return create_customer_reference(customer_id, self._secret)

    # ============================================================
    # PROVISION
    # ============================================================

    def _check_consent(self, customer: CustomerOut) -> None:
        if not customer.lgpd_consent:
            raise ComplianceError(
                "LGPD consent required for wallet integration",
                details={"customer_ref": self._customer_ref(customer.id)},
            )

        check = validate_compliance(
            ComplianceSubject(
                customer_id=customer.id,
                personal_data_stored=personal_data_fields(customer),
                created_at=customer.enrollment_date or customer.created_at,
                consent_date=customer.consent_date,
                last_accessed=customer.last_visit,
            ),
            retention_days=self._retention_days,
            dormant_days=self._dormant_days,
        )
        if check.is_compliant:
            return

        critical = check.critical_issues
        if critical:
            raise ComplianceError(
                "LGPD compliance error: " + ", ".join(i.message for i in critical),
                details={"customer_ref": self._customer_ref(customer.id), **check.as_dict()},
            )

        logger.warning(
            "LGPD compliance issues detected",
            extra={"customer_ref": self._customer_ref(customer.id), **check.as_dict()},
        )

    def provision_pass(self, customer_id, loyalty_card_id) -> CustomerLoyaltyCardOut:
        customer = self.store.get_customer(customer_id)
        self._check_consent(customer)

        program = self.store.get_loyalty_card(loyalty_card_id)
        if not program.wallet_enabled:
            raise WalletDisabledError(
                "Wallet integration not enabled for loyalty card",
                details={"loyalty_card_id": str(program.id)},
            )

        record = self.store.get_or_create_record(customer.id, program.id)
        if record.external_pass_id:
            logger.info(
                "wallet pass already exists",
                extra={"customer_ref": self._customer_ref(customer.id), "record_id": str(record.id)},
            )
            return record

        envelope = build_privacy_envelope(customer, program.business_id, self._secret)
        payload = {
            "templateId": str(program.id),
            "externalId": envelope.external_id,
            "person": envelope_to_person(envelope),
            "fields": {
                "balance": {"value": f"{record.current_stamps}/{program.stamps_required}", "label": BALANCE_LABEL},
                "reward": {"value": program.reward_description or "", "label": REWARD_LABEL},
            },
        }

        handle = self.provider.create_pass(payload)
        record = self.store.attach_pass(
            record.id,
            external_pass_id=handle.id,
            apple_url=handle.apple_url,
            google_url=handle.google_url,
            qr_code=handle.qr_code,
        )

        entry = create_audit_entry(
            AuditAction.DATA_EXPORT,
            customer.id,
            "system",
            {"action": "wallet_pass_created", "pass_id": handle.id, "loyalty_card_id": str(program.id)},
            secret=self._secret,
            compliance_notes=[
                "minimized data sent to wallet provider",
                "pseudonymous external id used",
            ],
        )
        self.store.save_audit_entry(entry, business_id=program.business_id)

        logger.info(
            "wallet pass created",
            extra={
                "pass_id": handle.id,
                "customer_ref": entry.customer_reference,
                "loyalty_card_id": str(program.id),
            },
        )
        return record

    # ============================================================
    # STAMP SYNC
    # ============================================================

    def push_stamp_balance(self, record_id, delta: int = 0) -> None:
        """Mirror the ledger balance onto the pass. Raises on provider failure."""

        record, program = self.store.get_record_with_program(record_id)
        if not record.external_pass_id or not program.wallet_enabled:
            logger.info(
                "skipping wallet update",
                extra={"record_id": str(record_id), "has_pass": bool(record.external_pass_id)},
            )
            return

        update = build_balance_fields(record, program)
        self.provider.update_pass(record.external_pass_id, update)

        logger.info(
            "wallet pass updated for stamp transaction",
            extra={
                "record_id": str(record_id),
                "stamps_delta": delta,
                "current_stamps": record.current_stamps,
                "stamps_required": program.stamps_required,
                "reward_available": update["rewardAvailable"],
            },
        )

    def apply_stamp_delta(self, record_id, delta: int) -> StampSyncResult:
        """Called after the ledger committed ``delta``. Never raises on sync failure."""

        record, program = self.store.get_record_with_program(record_id)
        if record.current_stamps >= program.stamps_required and record.status != "completed":
            record = self.store.mark_completed(record.id)

        result = StampSyncResult(
            record_id=str(record.id),
            current_stamps=record.current_stamps,
            stamps_required=program.stamps_required,
            status=record.status,
            outcome=SyncOutcome.SKIPPED,
        )

        if not record.external_pass_id or not program.wallet_enabled:
            return result

        try:
            self.push_stamp_balance(record.id, delta)
            result.outcome = SyncOutcome.SYNCED
        except PassValidationError as exc:
            # Retrying a malformed request cannot succeed.
            result.outcome = SyncOutcome.REJECTED
            result.error = str(exc)
            logger.error(
                "wallet pass update rejected",
                extra={"record_id": result.record_id, "error": str(exc), "details": exc.details},
            )
        except Exception as exc:
            if not isinstance(exc, TransientProviderError):
                logger.exception("unexpected wallet sync error", extra={"record_id": result.record_id})
            result.error = str(exc)
            if self.retry_queue is None:
                logger.error("no retry queue configured, dropping wallet sync", extra={"record_id": result.record_id})
                return result
            result.queue_item_id = self.retry_queue.enqueue(record.id, delta)
            result.outcome = SyncOutcome.QUEUED
            logger.warning(
                "wallet update failed, added to retry queue",
                extra={"record_id": result.record_id, "queue_item_id": result.queue_item_id, "error": str(exc)},
            )

        return result

    # ============================================================
    # REVOKE / ANONYMIZE
    # ============================================================

    def revoke_pass(self, external_pass_id: str) -> None:
        self.provider.delete_pass(external_pass_id)
        logger.info("wallet pass deleted", extra={"pass_id": external_pass_id})

    def anonymize_pass(self, external_pass_id: str) -> None:
        self.provider.update_pass(
            external_pass_id,
            {"person": {"displayName": ANONYMIZED_DISPLAY_NAME, "mobileNumber": "", "emailAddress": ""}},
        )
        logger.info("wallet pass anonymized", extra={"pass_id": external_pass_id})
