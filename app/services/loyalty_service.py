import logging
from datetime import datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.customer import Customer
from app.models.customer_loyalty_card import CustomerLoyaltyCard
from app.models.loyalty_card import LoyaltyCard
from app.models.stamp_transaction import StampTransaction
from app.services.pass_lifecycle import PassLifecycleManager
from app.services.privacy import create_customer_reference
from app.services.wallet_errors import ComplianceError, WalletError


logger = logging.getLogger(__name__)


# ============================================================
# ENROLL
# ============================================================

def enroll_customer(db: Session, lifecycle: PassLifecycleManager, payload, *, privacy_secret: str):
    program = db.get(LoyaltyCard, payload.loyalty_card_id)
    if not program:
        raise HTTPException(status_code=404, detail="Loyalty card not found")

    now = datetime.utcnow()
    consent_date = now if payload.consent.lgpd_accepted else None

    # same phone in the same business = same customer
    customer = (
        db.query(Customer)
        .filter(Customer.business_id == program.business_id, Customer.phone == payload.phone)
        .first()
    )
    if customer:
        customer.name = payload.name
        customer.email = payload.email or None
        customer.custom_fields = payload.custom_fields or {}
        customer.lgpd_consent = payload.consent.lgpd_accepted
        customer.consent_date = consent_date
    else:
        customer = Customer(
            business_id=program.business_id,
            name=payload.name,
            phone=payload.phone,
            email=payload.email or None,
            custom_fields=payload.custom_fields or {},
            lgpd_consent=payload.consent.lgpd_accepted,
            consent_date=consent_date,
            enrollment_date=now,
        )
        db.add(customer)
    db.commit()
    db.refresh(customer)

    customer_ref = create_customer_reference(customer.id, privacy_secret)
    logger.info("enrollment received", extra={"customer_ref": customer_ref, "loyalty_card_id": str(program.id)})

    record = lifecycle.store.get_or_create_record(customer.id, program.id)

    wallet_error = None
    if program.wallet_enabled and customer.lgpd_consent:
        try:
            record = lifecycle.provision_pass(customer.id, program.id)
        except ComplianceError:
            raise
        except WalletError as exc:
            # Enrollment stands; the pass can be provisioned later.
            wallet_error = str(exc)
            logger.warning(
                "wallet pass provisioning failed on enrollment",
                extra={"customer_ref": customer_ref, "kind": exc.kind.value, "error": str(exc)},
            )

    return customer, record, wallet_error


# ============================================================
# AWARD STAMPS
# ============================================================

def _select_card(db: Session, business_id: str, customer_id, loyalty_card_id=None) -> CustomerLoyaltyCard:
    cards = (
        db.query(CustomerLoyaltyCard)
        .join(LoyaltyCard, LoyaltyCard.id == CustomerLoyaltyCard.loyalty_card_id)
        .filter(CustomerLoyaltyCard.customer_id == customer_id)
        .filter(LoyaltyCard.business_id == business_id)
        .order_by(CustomerLoyaltyCard.created_at.asc())
        .all()
    )
    if not cards:
        raise HTTPException(status_code=404, detail="Customer has no loyalty cards for this business")

    if loyalty_card_id:
        for card in cards:
            if card.loyalty_card_id == loyalty_card_id:
                return card
        raise HTTPException(status_code=404, detail="Specified loyalty card not found for this customer")

    for card in cards:
        if card.status == "active":
            return card
    if len(cards) == 1:
        return cards[0]
    raise HTTPException(status_code=400, detail="Multiple cards found. Please specify loyalty_card_id")


def _stamps_today(db: Session, card_id, now: datetime) -> int:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    total = (
        db.query(func.coalesce(func.sum(StampTransaction.stamps_added), 0))
        .filter(
            StampTransaction.customer_loyalty_card_id == card_id,
            StampTransaction.created_at >= start,
            StampTransaction.created_at < end,
        )
        .scalar()
    )
    return int(total or 0)


def award_stamps(db: Session, lifecycle: PassLifecycleManager, business_id: str, payload):
    customer = (
        db.query(Customer)
        .filter(Customer.id == payload.customer_id, Customer.business_id == business_id)
        .first()
    )
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found or access denied")

    card = _select_card(db, business_id, customer.id, payload.loyalty_card_id)
    card = db.query(CustomerLoyaltyCard).filter(CustomerLoyaltyCard.id == card.id).with_for_update().one()
    program = db.get(LoyaltyCard, card.loyalty_card_id)

    now = datetime.utcnow()
    if program.max_stamps_per_day and program.max_stamps_per_day > 0:
        if _stamps_today(db, card.id, now) >= program.max_stamps_per_day:
            raise HTTPException(
                status_code=400,
                detail=f"Daily limit of {program.max_stamps_per_day} stamp(s) reached",
            )

    current = card.current_stamps or 0
    new_count = min(current + payload.stamps, program.stamps_required)
    applied = new_count - current

    was_completed = current >= program.stamps_required
    now_completed = new_count >= program.stamps_required
    if not was_completed and now_completed:
        card.status = "completed"
        card.total_redeemed = (card.total_redeemed or 0) + 1
    elif not now_completed:
        card.status = "active"

    card.current_stamps = new_count
    card.updated_at = now

    db.add(
        StampTransaction(
            customer_loyalty_card_id=card.id,
            stamps_added=payload.stamps,
            transaction_type="manual",
            notes=payload.notes or "stamp added from dashboard",
            created_at=now,
        )
    )

    customer.total_visits = (customer.total_visits or 0) + 1
    customer.last_visit = now

    # Ledger first; the pass is a best-effort mirror.
    db.commit()
    db.refresh(card)

    sync = lifecycle.apply_stamp_delta(card.id, applied)

    logger.info(
        "stamp addition successful",
        extra={
            "record_id": str(card.id),
            "stamps_added": payload.stamps,
            "current_stamps": card.current_stamps,
            "card_status": card.status,
            "wallet_sync": sync.outcome.value,
        },
    )
    return card, sync
