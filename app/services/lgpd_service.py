from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.services.pass_lifecycle import PassLifecycleManager
from app.services.privacy import anonymize, mask_value
from app.services.privacy_audit import AuditAction, AuditEntry, create_audit_entry


logger = logging.getLogger(__name__)

DATA_RETENTION_POLICY = "Dados mantidos conforme política de retenção da empresa"
RIGHTS_INFORMATION = "Você tem direito a acessar, corrigir, apagar ou portar seus dados conforme a LGPD"
LGPD_RIGHTS = ["access", "correction", "deletion", "portability", "anonymization"]


@dataclass
class LgpdActionResult:
    success: bool
    action: str
    message: str
    data: Optional[Dict[str, Any]] = None
    errors: List[str] = field(default_factory=list)
    audit_entry: Optional[AuditEntry] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class LgpdService:
    """Export / delete / anonymize requests over a customer's wallet data."""

    def __init__(self, lifecycle: PassLifecycleManager, *, privacy_secret: str) -> None:
        self.lifecycle = lifecycle
        self.store = lifecycle.store
        self._secret = privacy_secret

    def _audit(
        self,
        action: AuditAction,
        customer,
        performed_by: str,
        details: Dict[str, Any],
        notes: List[str] | None = None,
    ) -> AuditEntry:
        entry = create_audit_entry(
            action,
            customer.id,
            performed_by,
            details,
            secret=self._secret,
            compliance_notes=notes,
        )
        self.store.save_audit_entry(entry, business_id=customer.business_id)
        logger.info(
            "LGPD audit entry",
            extra={
                "action": entry.action.value,
                "customer_ref": entry.customer_reference,
                "performed_by": entry.performed_by,
                "details": entry.details,
            },
        )
        return entry

    # ============================================================
    # EXPORT
    # ============================================================

    def export_wallet_data(self, customer_id, *, requested_by: str = "system", reason: str | None = None) -> LgpdActionResult:
        customer = self.store.get_customer(customer_id)
        records = self.store.list_customer_records(customer.id)

        wallet_passes = [
            {
                "id": str(record.id),
                "loyalty_card_name": program.name,
                "external_pass_id": record.external_pass_id,
                "wallet_url_apple": record.wallet_url_apple,
                "wallet_url_google": record.wallet_url_google,
                "current_stamps": record.current_stamps,
                "total_redeemed": record.total_redeemed,
                "status": record.status,
                "created_at": _iso(record.created_at),
                "last_updated": _iso(record.updated_at),
            }
            for record, program in records
            if record.external_pass_id
        ]

        created = [record.created_at for record, _ in records if record.external_pass_id and record.created_at]
        export = {
            "customer": {
                "id": str(customer.id),
                "name": customer.name,
                "phone": customer.phone,
                "email": customer.email,
                "enrollment_date": _iso(customer.enrollment_date),
            },
            "walletPasses": wallet_passes,
            "walletData": {
                "totalPasses": len(wallet_passes),
                "activePasses": sum(1 for p in wallet_passes if p["status"] == "active"),
                "lastActivity": _iso(max(created)) if created else None,
            },
            "exportInfo": {
                "exportDate": datetime.now(timezone.utc).isoformat(),
                "exportedBy": requested_by,
                "dataRetentionPolicy": DATA_RETENTION_POLICY,
                "rightsInformation": RIGHTS_INFORMATION,
            },
        }

        entry = self._audit(
            AuditAction.DATA_EXPORT,
            customer,
            requested_by,
            {"exported_passes": len(wallet_passes), "reason": reason},
        )
        return LgpdActionResult(
            success=True,
            action="export",
            message="wallet data exported",
            data=export,
            audit_entry=entry,
        )

    # ============================================================
    # DELETE
    # ============================================================

    def delete_wallet_data(self, customer_id, *, requested_by: str = "system", reason: str | None = None) -> LgpdActionResult:
        customer = self.store.get_customer(customer_id)
        records = [r for r, _ in self.store.list_customer_records(customer.id) if r.external_pass_id]

        deleted = 0
        errors: List[str] = []
        for record in records:
            try:
                self.lifecycle.revoke_pass(record.external_pass_id)
                self.store.clear_wallet(record.id)
                deleted += 1
            except Exception as exc:
                logger.error(
                    "wallet pass deletion failed",
                    extra={"record_id": str(record.id), "error": str(exc)},
                )
                errors.append(f"card {record.id}: {exc}")

        entry = self._audit(
            AuditAction.DATA_DELETION,
            customer,
            requested_by,
            {"deleted_passes": deleted, "total_passes": len(records), "errors": len(errors), "reason": reason},
            ["wallet passes revoked at provider", "wallet identifiers cleared from ledger"],
        )

        message = f"{deleted} wallet pass(es) deleted"
        if errors:
            message += f", {len(errors)} error(s)"
        return LgpdActionResult(
            success=not errors,
            action="delete",
            message=message,
            data={"deletedPasses": deleted, "totalPasses": len(records)},
            errors=errors,
            audit_entry=entry,
        )

    # ============================================================
    # ANONYMIZE
    # ============================================================

    def anonymize_wallet_data(self, customer_id, *, requested_by: str = "system", reason: str | None = None) -> LgpdActionResult:
        customer = self.store.get_customer(customer_id)
        records = [r for r, _ in self.store.list_customer_records(customer.id) if r.external_pass_id]

        anonymized = 0
        errors: List[str] = []
        for record in records:
            try:
                self.lifecycle.anonymize_pass(record.external_pass_id)
                anonymized += 1
            except Exception as exc:
                logger.error(
                    "wallet pass anonymization failed",
                    extra={"record_id": str(record.id), "error": str(exc)},
                )
                errors.append(f"card {record.id}: {exc}")

        masked = anonymize({"name": customer.name, "phone": customer.phone, "email": customer.email})
        self.store.anonymize_customer(
            customer.id,
            name=masked["name"],
            phone=masked["phone"],
            email=masked["email"],
        )

        entry = self._audit(
            AuditAction.DATA_ANONYMIZATION,
            customer,
            requested_by,
            {"anonymized_passes": anonymized, "total_passes": len(records), "errors": len(errors), "reason": reason},
            ["personal fields masked in ledger", "person data replaced on wallet passes"],
        )

        message = f"{anonymized} wallet pass(es) anonymized"
        if errors:
            message += f", {len(errors)} error(s)"
        return LgpdActionResult(
            success=not errors,
            action="anonymize",
            message=message,
            data={"anonymizedPasses": anonymized, "totalPasses": len(records)},
            errors=errors,
            audit_entry=entry,
        )

    # ============================================================
    # SUMMARY
    # ============================================================

    def summarize_wallet_data(self, customer_id) -> Dict[str, Any]:
        customer = self.store.get_customer(customer_id)
        records = self.store.list_customer_records(customer.id)

        provisioned = [r for r, _ in records if r.external_pass_id]
        oldest = min((r.created_at for r in provisioned if r.created_at), default=None)
        return {
            "customerId": str(customer.id),
            "customerName": mask_value(customer.name),
            "totalLoyaltyCards": len(records),
            "walletEnabledCards": sum(1 for _, p in records if p.wallet_enabled),
            "activeWalletPasses": len(provisioned),
            "walletPlatforms": {
                "apple": any(r.wallet_url_apple for r, _ in records),
                "google": any(r.wallet_url_google for r, _ in records),
            },
            "dataRetentionInfo": {
                "oldestWalletPass": _iso(oldest),
                "lgpdRights": list(LGPD_RIGHTS),
            },
        }
