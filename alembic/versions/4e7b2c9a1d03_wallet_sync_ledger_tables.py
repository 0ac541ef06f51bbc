"""wallet sync ledger tables

Revision ID: 4e7b2c9a1d03
Revises:
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa


revision = "4e7b2c9a1d03"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    insp = sa.inspect(bind)
    return table_name in insp.get_table_names()


def _index_names(bind, table_name: str) -> set:
    if not _table_exists(bind, table_name):
        return set()
    return {ix["name"] for ix in sa.inspect(bind).get_indexes(table_name)}


def upgrade() -> None:
    bind = op.get_bind()

    if not _table_exists(bind, "customers"):
        op.create_table(
            "customers",
            sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("business_id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=True),
            sa.Column("birthdate", sa.Date(), nullable=True),
            sa.Column("custom_fields", sa.JSON(), nullable=False),
            sa.Column("lgpd_consent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("consent_date", sa.TIMESTAMP(), nullable=True),
            sa.Column("enrollment_date", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.Column("last_visit", sa.TIMESTAMP(), nullable=True),
            sa.Column("total_visits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
        )
    if "ix_customers_business_id" not in _index_names(bind, "customers"):
        op.create_index("ix_customers_business_id", "customers", ["business_id"], unique=False)
    if "ix_customers_business_id_phone" not in _index_names(bind, "customers"):
        op.create_index("ix_customers_business_id_phone", "customers", ["business_id", "phone"], unique=False)

    if not _table_exists(bind, "loyalty_cards"):
        op.create_table(
            "loyalty_cards",
            sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("business_id", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.String(length=1000), nullable=True),
            sa.Column("stamps_required", sa.Integer(), nullable=False),
            sa.Column("reward_description", sa.String(length=500), nullable=True),
            sa.Column("max_stamps_per_day", sa.Integer(), nullable=True),
            sa.Column("wallet_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
        )
    if "ix_loyalty_cards_business_id" not in _index_names(bind, "loyalty_cards"):
        op.create_index("ix_loyalty_cards_business_id", "loyalty_cards", ["business_id"], unique=False)

    if not _table_exists(bind, "customer_loyalty_cards"):
        op.create_table(
            "customer_loyalty_cards",
            sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("customer_id", sa.dialects.postgresql.UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False),
            sa.Column(
                "loyalty_card_id",
                sa.dialects.postgresql.UUID(as_uuid=True),
                sa.ForeignKey("loyalty_cards.id"),
                nullable=False,
            ),
            sa.Column("current_stamps", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_redeemed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("external_pass_id", sa.String(length=100), nullable=True),
            sa.Column("wallet_url_apple", sa.String(length=500), nullable=True),
            sa.Column("wallet_url_google", sa.String(length=500), nullable=True),
            sa.Column("qr_code", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.Column("updated_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
            sa.UniqueConstraint("customer_id", "loyalty_card_id", name="uq_customer_loyalty_cards_customer_card"),
        )

    if not _table_exists(bind, "stamp_transactions"):
        op.create_table(
            "stamp_transactions",
            sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column(
                "customer_loyalty_card_id",
                sa.dialects.postgresql.UUID(as_uuid=True),
                sa.ForeignKey("customer_loyalty_cards.id"),
                nullable=False,
            ),
            sa.Column("stamps_added", sa.Integer(), nullable=False),
            sa.Column("transaction_type", sa.String(length=20), nullable=False, server_default="manual"),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(), server_default=sa.text("now()"), nullable=True),
        )
    if "ix_stamp_transactions_card_created_at" not in _index_names(bind, "stamp_transactions"):
        op.create_index(
            "ix_stamp_transactions_card_created_at",
            "stamp_transactions",
            ["customer_loyalty_card_id", "created_at"],
            unique=False,
        )

    if not _table_exists(bind, "privacy_audit_logs"):
        op.create_table(
            "privacy_audit_logs",
            sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
            sa.Column("business_id", sa.String(length=64), nullable=True),
            sa.Column("action", sa.String(length=30), nullable=False),
            sa.Column("customer_reference", sa.String(length=40), nullable=False),
            sa.Column("performed_by", sa.String(length=200), nullable=False),
            sa.Column("details", sa.JSON(), nullable=False),
            sa.Column("compliance_notes", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.TIMESTAMP(), nullable=False),
        )
    if "ix_privacy_audit_logs_customer_reference" not in _index_names(bind, "privacy_audit_logs"):
        op.create_index(
            "ix_privacy_audit_logs_customer_reference",
            "privacy_audit_logs",
            ["customer_reference"],
            unique=False,
        )


def downgrade() -> None:
    bind = op.get_bind()

    for table_name in (
        "privacy_audit_logs",
        "stamp_transactions",
        "customer_loyalty_cards",
        "loyalty_cards",
        "customers",
    ):
        if _table_exists(bind, table_name):
            op.drop_table(table_name)
