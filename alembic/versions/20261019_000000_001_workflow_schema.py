"""Workflow schema: identity, bookings, consent, referrals, consultations, billing.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("updated_by", sa.String(36), nullable=True),
    ]


def upgrade() -> None:
    """Create the workflow schema."""

    # Identity directory
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("unique_id", sa.String(40), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("profile", postgresql.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("unique_id", name="uq_users_unique_id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    # Bookings (read by the access gate, settled by payments)
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=True),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("provider_id", sa.String(36), nullable=False),
        sa.Column("booking_type", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_bookings"),
        sa.UniqueConstraint("reference_number", name="uq_bookings_reference_number"),
        sa.ForeignKeyConstraint(["patient_id"], ["users.id"], name="fk_bookings_patient_id_users"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["users.id"], name="fk_bookings_provider_id_users"
        ),
    )
    op.create_index("ix_bookings_patient_id", "bookings", ["patient_id"])
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"])
    op.create_index("ix_bookings_provider_patient", "bookings", ["provider_id", "patient_id"])

    # Consent requests
    op.create_table(
        "consent_requests",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("requester_id", sa.String(36), nullable=False),
        sa.Column("requester_role", sa.String(20), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_consent_requests"),
        sa.ForeignKeyConstraint(
            ["patient_id"], ["users.id"], name="fk_consent_requests_patient_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["requester_id"], ["users.id"], name="fk_consent_requests_requester_id_users"
        ),
    )
    op.create_index(
        "ix_consent_requests_reference_number",
        "consent_requests",
        ["reference_number"],
        unique=True,
    )
    op.create_index(
        "ix_consent_requests_pair_status",
        "consent_requests",
        ["patient_id", "requester_id", "status"],
    )

    # Referrals
    op.create_table(
        "referrals",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=False),
        sa.Column("source_id", sa.String(36), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("referral_type", sa.String(30), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("priority", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source_snapshot", postgresql.JSON(), nullable=False),
        sa.Column("target_snapshot", postgresql.JSON(), nullable=False),
        sa.Column("patient_snapshot", postgresql.JSON(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_referrals"),
        sa.ForeignKeyConstraint(["source_id"], ["users.id"], name="fk_referrals_source_id_users"),
        sa.ForeignKeyConstraint(["target_id"], ["users.id"], name="fk_referrals_target_id_users"),
        sa.ForeignKeyConstraint(
            ["patient_id"], ["users.id"], name="fk_referrals_patient_id_users"
        ),
    )
    op.create_index(
        "ix_referrals_reference_number", "referrals", ["reference_number"], unique=True
    )
    op.create_index("ix_referrals_source_id", "referrals", ["source_id"])
    op.create_index("ix_referrals_target_id", "referrals", ["target_id"])
    op.create_index("ix_referrals_patient_id", "referrals", ["patient_id"])
    op.create_index("ix_referrals_status_priority", "referrals", ["status", "priority"])

    # Consultations
    op.create_table(
        "consultations",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=False),
        sa.Column("doctor_id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("notes", postgresql.JSON(), nullable=False),
        sa.Column("messages", postgresql.JSON(), nullable=False),
        sa.Column("diagnosis", sa.Text(), nullable=True),
        sa.Column("follow_up_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("follow_up_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("channel_name", sa.String(64), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("doctor_snapshot", postgresql.JSON(), nullable=True),
        sa.Column("patient_snapshot", postgresql.JSON(), nullable=True),
        *_timestamps(),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_consultations"),
        sa.ForeignKeyConstraint(
            ["doctor_id"], ["users.id"], name="fk_consultations_doctor_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["patient_id"], ["users.id"], name="fk_consultations_patient_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["booking_id"], ["bookings.id"], name="fk_consultations_booking_id_bookings"
        ),
    )
    op.create_index(
        "ix_consultations_reference_number", "consultations", ["reference_number"], unique=True
    )
    op.create_index("ix_consultations_doctor_id", "consultations", ["doctor_id"])
    op.create_index("ix_consultations_patient_id", "consultations", ["patient_id"])
    op.create_index("ix_consultations_status", "consultations", ["status"])

    # Prescriptions
    op.create_table(
        "prescriptions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=False),
        sa.Column("doctor_id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=False),
        sa.Column("pharmacy_id", sa.String(36), nullable=True),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("medicines", postgresql.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("doctor_snapshot", postgresql.JSON(), nullable=True),
        sa.Column("patient_snapshot", postgresql.JSON(), nullable=True),
        sa.Column("pharmacy_snapshot", postgresql.JSON(), nullable=True),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_by", sa.String(36), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_prescriptions"),
        sa.ForeignKeyConstraint(
            ["doctor_id"], ["users.id"], name="fk_prescriptions_doctor_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["patient_id"], ["users.id"], name="fk_prescriptions_patient_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["pharmacy_id"], ["users.id"], name="fk_prescriptions_pharmacy_id_users"
        ),
        sa.ForeignKeyConstraint(
            ["booking_id"], ["bookings.id"], name="fk_prescriptions_booking_id_bookings"
        ),
    )
    op.create_index(
        "ix_prescriptions_reference_number", "prescriptions", ["reference_number"], unique=True
    )
    op.create_index("ix_prescriptions_doctor_id", "prescriptions", ["doctor_id"])
    op.create_index("ix_prescriptions_patient_id", "prescriptions", ["patient_id"])
    op.create_index("ix_prescriptions_pharmacy_id", "prescriptions", ["pharmacy_id"])
    op.create_index("ix_prescriptions_status", "prescriptions", ["status"])

    # Payments
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=False),
        sa.Column("gateway_payment_id", sa.String(100), nullable=True),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("prescription_id", sa.String(36), nullable=True),
        sa.Column("payer_id", sa.String(36), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("signature", sa.String(255), nullable=True),
        sa.Column("method", sa.String(30), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("refund_id", sa.String(100), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("refund_status", sa.String(20), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("webhook_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("metadata", postgresql.JSON(), nullable=True),
        *_timestamps(),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_payments"),
        sa.ForeignKeyConstraint(
            ["booking_id"], ["bookings.id"], name="fk_payments_booking_id_bookings"
        ),
        sa.ForeignKeyConstraint(
            ["prescription_id"],
            ["prescriptions.id"],
            name="fk_payments_prescription_id_prescriptions",
        ),
        sa.ForeignKeyConstraint(["payer_id"], ["users.id"], name="fk_payments_payer_id_users"),
        sa.CheckConstraint(
            "(booking_id IS NULL) <> (prescription_id IS NULL)",
            name="ck_payments_single_parent",
        ),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=True)
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_prescription_id", "payments", ["prescription_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    # Invoices
    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("reference_number", sa.String(40), nullable=False),
        sa.Column("provider_id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(36), nullable=True),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("prescription_id", sa.String(36), nullable=True),
        sa.Column("items", postgresql.JSON(), nullable=False),
        sa.Column("tax_details", postgresql.JSON(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_tax", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("payment_status", sa.String(20), nullable=False),
        sa.Column("settlement_reference", sa.String(100), nullable=True),
        sa.Column("payment_method", sa.String(20), nullable=True),
        sa.Column("invoice_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("provider_snapshot", postgresql.JSON(), nullable=True),
        sa.Column("patient_snapshot", postgresql.JSON(), nullable=True),
        *_timestamps(),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_invoices"),
        sa.ForeignKeyConstraint(
            ["provider_id"], ["users.id"], name="fk_invoices_provider_id_users"
        ),
        sa.ForeignKeyConstraint(["patient_id"], ["users.id"], name="fk_invoices_patient_id_users"),
        sa.ForeignKeyConstraint(
            ["booking_id"], ["bookings.id"], name="fk_invoices_booking_id_bookings"
        ),
        sa.ForeignKeyConstraint(
            ["prescription_id"],
            ["prescriptions.id"],
            name="fk_invoices_prescription_id_prescriptions",
        ),
        sa.CheckConstraint(
            "booking_id IS NULL OR prescription_id IS NULL",
            name="ck_invoices_at_most_one_parent",
        ),
    )
    op.create_index(
        "ix_invoices_reference_number", "invoices", ["reference_number"], unique=True
    )
    op.create_index("ix_invoices_provider_id", "invoices", ["provider_id"])
    op.create_index("ix_invoices_patient_id", "invoices", ["patient_id"])
    op.create_index("ix_invoices_booking_id", "invoices", ["booking_id"])
    op.create_index("ix_invoices_prescription_id", "invoices", ["prescription_id"])
    op.create_index("ix_invoices_status", "invoices", ["status"])

    # Audit events (append-only)
    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(36), nullable=True),
        sa.Column("actor_role", sa.String(20), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=True),
        sa.Column("metadata", postgresql.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_events")
    op.drop_table("invoices")
    op.drop_table("payments")
    op.drop_table("prescriptions")
    op.drop_table("consultations")
    op.drop_table("referrals")
    op.drop_table("consent_requests")
    op.drop_table("bookings")
    op.drop_table("users")
