"""Data minimization and pseudonymization for anything leaving the system.

Nothing here touches the database or the network; every function is a pure
mapping so it can be reused by the lifecycle manager, the audit layer and the
log statements alike.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional


EXTERNAL_ID_PREFIX = "ext_"
CUSTOMER_REFERENCE_PREFIX = "cust_"

_NAME_KEYS = {"name", "first_name", "last_name", "full_name", "display_name", "display_first_name", "surname"}
_PHONE_KEYS = {"phone", "mobile", "mobile_number", "mobileNumber"}
_EMAIL_KEYS = {"email", "email_address", "emailAddress"}
# Operator-written text; may quote anything the customer said.
_FREE_TEXT_KEYS = {"reason", "notes", "comment"}


@dataclass(frozen=True)
class PrivacyEnvelope:
    external_id: str
    display_first_name: str
    phone: str
    email: Optional[str] = None


def _keyed_digest(secret: str, *parts: str) -> str:
    message = ":".join(parts).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def generate_external_id(customer_id, business_id, secret: str) -> str:
    """Deterministic, non-reversible id sent to the wallet provider.

    The same (customer, business) pair always yields the same id, which lets
    the provider upsert instead of duplicating members.
    """
    return EXTERNAL_ID_PREFIX + _keyed_digest(secret, str(customer_id), str(business_id))[:16]


def create_customer_reference(customer_id, secret: str) -> str:
    return CUSTOMER_REFERENCE_PREFIX + _keyed_digest(secret, str(customer_id))[:12]


def mask_value(value: str) -> str:
    if not value:
        return value
    if len(value) == 1:
        return "*"
    if len(value) == 2:
        return value[0] + "*"
    return value[0] + "*" * (len(value) - 2) + value[-1]


def _mask_email(value: str) -> str:
    if "@" not in value:
        return mask_value(value)
    local, _, domain = value.partition("@")
    return mask_value(local) + "@" + mask_value(domain)


def mask_text(value: str) -> str:
    return " ".join(mask_value(token) for token in value.split())


def anonymize(data: Any) -> Any:
    """Copy of ``data`` with name, phone, email and free-text values masked."""

    if isinstance(data, list):
        return [anonymize(item) for item in data]
    if not isinstance(data, dict):
        return data

    anonymized: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str) and value:
            if key in _EMAIL_KEYS:
                anonymized[key] = _mask_email(value)
                continue
            if key in _NAME_KEYS or key in _PHONE_KEYS:
                anonymized[key] = mask_value(value)
                continue
            if key in _FREE_TEXT_KEYS:
                anonymized[key] = mask_text(value)
                continue
        anonymized[key] = anonymize(value)
    return anonymized


def first_name(name: str) -> str:
    parts = (name or "").split()
    return parts[0] if parts else ""


def build_privacy_envelope(customer, business_id, secret: str) -> PrivacyEnvelope:
    # Surname, tags, visit history and custom form answers never leave.
    return PrivacyEnvelope(
        external_id=generate_external_id(customer.id, business_id, secret),
        display_first_name=first_name(customer.name),
        phone=customer.phone,
        email=customer.email or None,
    )


def envelope_to_person(envelope: PrivacyEnvelope) -> Dict[str, str]:
    person = {
        "displayName": envelope.display_first_name,
        "mobileNumber": envelope.phone,
    }
    if envelope.email:
        person["emailAddress"] = envelope.email
    return person
