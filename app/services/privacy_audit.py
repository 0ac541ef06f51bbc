from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, field_serializer, field_validator

from app.services.privacy import anonymize, create_customer_reference


ALLOWED_PERSONAL_FIELDS = ("name", "phone", "email")
DEFAULT_RETENTION_DAYS = 2555  # ~7 years
DEFAULT_DORMANT_DAYS = 365

# Issues that block provisioning outright.
CRITICAL_ISSUE_CODES = {"consent_missing", "retention_exceeded"}


class AuditAction(str, Enum):
    DATA_EXPORT = "data_export"
    DATA_DELETION = "data_deletion"
    DATA_ANONYMIZATION = "data_anonymization"
    CONSENT_UPDATED = "consent_updated"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class AuditEntry(BaseModel):
    timestamp: datetime
    action: AuditAction
    customer_reference: str
    performed_by: str
    details: Mapping[str, Any]
    compliance_notes: Tuple[str, ...] = ()

    class Config:
        frozen = True

    @field_validator("details", mode="after")
    @classmethod
    def _freeze_details(cls, value):
        # Nested values are frozen too.
        return _freeze(value)

    @field_serializer("details")
    def _serialize_details(self, value):
        return _thaw(value)


@dataclass
class ComplianceSubject:
    customer_id: Any
    personal_data_stored: List[str]
    created_at: datetime
    consent_date: Optional[datetime] = None
    last_accessed: Optional[datetime] = None


@dataclass
class ComplianceIssue:
    code: str
    message: str


@dataclass
class ComplianceCheck:
    issues: List[ComplianceIssue] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def is_compliant(self) -> bool:
        return not self.issues

    @property
    def critical_issues(self) -> List[ComplianceIssue]:
        return [i for i in self.issues if i.code in CRITICAL_ISSUE_CODES]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isCompliant": self.is_compliant,
            "issues": [i.message for i in self.issues],
            "recommendations": list(self.recommendations),
        }


def _utcnow() -> datetime:
    # Naive UTC, matching the TIMESTAMP columns.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def check_data_retention(created_at: datetime, *, retention_days: int = DEFAULT_RETENTION_DAYS, now: datetime | None = None):
    now = now or _utcnow()
    days_since_creation = (now - _as_naive_utc(created_at)).days
    return {
        "shouldDelete": days_since_creation > retention_days,
        "daysRemaining": max(0, retention_days - days_since_creation),
    }


def validate_compliance(
    subject: ComplianceSubject,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    dormant_days: int = DEFAULT_DORMANT_DAYS,
    now: datetime | None = None,
) -> ComplianceCheck:
    now = now or _utcnow()
    check = ComplianceCheck()

    if not subject.consent_date:
        check.issues.append(ComplianceIssue("consent_missing", "consent date not documented"))
        check.recommendations.append("record the LGPD consent date")

    unnecessary = [f for f in subject.personal_data_stored if f not in ALLOWED_PERSONAL_FIELDS]
    if unnecessary:
        check.issues.append(
            ComplianceIssue("unnecessary_data", f"unnecessary personal data stored: {', '.join(unnecessary)}")
        )
        check.recommendations.append("remove personal data outside the allow-list")

    retention = check_data_retention(subject.created_at, retention_days=retention_days, now=now)
    if retention["shouldDelete"]:
        check.issues.append(ComplianceIssue("retention_exceeded", "data kept beyond the retention window"))
        check.recommendations.append("delete or anonymize the record")

    if subject.last_accessed:
        days_since_access = (now - _as_naive_utc(subject.last_accessed)).days
        if days_since_access > dormant_days:
            check.recommendations.append(f"customer dormant for more than {dormant_days} days, review for deletion")

    return check


def create_audit_entry(
    action: AuditAction | str,
    customer_id,
    performed_by: str,
    details: Dict[str, Any] | None,
    *,
    secret: str,
    compliance_notes: List[str] | None = None,
    now: datetime | None = None,
) -> AuditEntry:
    return AuditEntry(
        timestamp=now or _utcnow(),
        action=AuditAction(action),
        customer_reference=create_customer_reference(customer_id, secret),
        performed_by=performed_by,
        details=anonymize(dict(details or {})),
        compliance_notes=tuple(compliance_notes or ()),
    )


def integration_compliance_report() -> Dict[str, Any]:
    checks = [
        {
            "requirement": "data_minimization",
            "status": "compliant",
            "notes": "only first name, phone and optional email are sent to the wallet provider",
        },
        {
            "requirement": "pseudonymous_external_ids",
            "status": "compliant",
            "notes": "external ids are keyed hashes of customer and business ids",
        },
        {
            "requirement": "data_deletion",
            "status": "compliant",
            "notes": "passes are revoked at the provider on deletion requests",
        },
        {
            "requirement": "data_export",
            "status": "compliant",
            "notes": "export returns every provisioned wallet pass",
        },
        {
            "requirement": "documented_consent",
            "status": "partial",
            "notes": "consent is collected on enrollment, wallet-specific consent date is not tracked separately",
        },
        {
            "requirement": "log_anonymization",
            "status": "compliant",
            "notes": "logs and audit entries carry pseudonymous references and masked fields",
        },
    ]
    return {
        "compliant": all(c["status"] == "compliant" for c in checks),
        "checks": checks,
    }
