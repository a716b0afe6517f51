"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for the booking engine:
bookings, bids, extra_parts_requests, reschedule_requests,
appeals, payment_settlements, booking_mutations, reviews.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- bookings ---
    op.create_table(
        "bookings",
        sa.Column("booking_id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), nullable=False, index=True),
        sa.Column("service_category", sa.String(20), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("stage", sa.String(30), nullable=False, server_default="seeking_contractor"),
        sa.Column("assignment_mode", sa.String(20), nullable=False, server_default="open_bidding"),
        sa.Column("preferred_contractor_id", sa.String(36), nullable=True),
        sa.Column("contractor_id", sa.String(36), nullable=True, index=True),
        sa.Column("accepted_bid_id", sa.String(36), nullable=True),
        sa.Column("bidding_round", sa.Integer, nullable=False, server_default="1"),
        sa.Column("excluded_contractor_ids", sa.JSON, nullable=False),
        sa.Column("budget_min", sa.Numeric(10, 2), nullable=False),
        sa.Column("budget_max", sa.Numeric(10, 2), nullable=False),
        sa.Column("accepted_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("final_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_asap", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("scheduled_date", sa.Date, nullable=True),
        sa.Column("scheduled_time", sa.Time, nullable=True),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="UTC"),
        sa.Column("scheduled_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("eta_minutes", sa.Integer, nullable=True),
        sa.Column("eta_set_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("before_evidence", sa.JSON, nullable=False),
        sa.Column("progress_evidence", sa.JSON, nullable=False),
        sa.Column("after_evidence", sa.JSON, nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("forfeit_reason", sa.String(500), nullable=True),
        sa.Column("forfeited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("budget_min > 0", name="check_booking_budget_min_positive"),
        sa.CheckConstraint("budget_max >= budget_min", name="check_booking_budget_range"),
    )
    op.create_index("ix_bookings_stage_category", "bookings", ["stage", "service_category"])

    # --- bids ---
    op.create_table(
        "bids",
        sa.Column("bid_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, index=True),
        sa.Column("contractor_id", sa.String(36), nullable=False, index=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("included_items", sa.JSON, nullable=False),
        sa.Column("eta_minutes", sa.Integer, nullable=False),
        sa.Column("note", sa.String(1000), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("bidding_round", sa.Integer, nullable=False, server_default="1"),
        sa.Column("is_synthetic", sa.Boolean, nullable=False, server_default="0"),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="check_bid_amount_positive"),
        sa.CheckConstraint("eta_minutes > 0", name="check_bid_eta_positive"),
    )
    op.create_index(
        "uq_bids_one_accepted_per_round",
        "bids",
        ["booking_id", "bidding_round"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
        sqlite_where=sa.text("status = 'accepted'"),
    )
    op.create_index(
        "uq_bids_one_pending_per_contractor",
        "bids",
        ["booking_id", "contractor_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # --- extra_parts_requests ---
    op.create_table(
        "extra_parts_requests",
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, index=True),
        sa.Column("contractor_id", sa.String(36), nullable=False),
        sa.Column("part_name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("justification", sa.String(1000), nullable=False),
        sa.Column("photo_url", sa.String(1000), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("resolved_by_customer_id", sa.String(36), nullable=True),
        sa.Column("customer_notes", sa.String(1000), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="check_extra_parts_quantity_positive"),
        sa.CheckConstraint("unit_price > 0", name="check_extra_parts_unit_price_positive"),
    )

    # --- reschedule_requests ---
    op.create_table(
        "reschedule_requests",
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, index=True),
        sa.Column("requested_by", sa.String(20), nullable=False),
        sa.Column("requester_id", sa.String(36), nullable=False),
        sa.Column("new_date", sa.Date, nullable=False),
        sa.Column("new_time", sa.Time, nullable=False),
        sa.Column("proposed_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.String(1000), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("resolved_by", sa.String(36), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "uq_reschedule_one_pending_per_booking",
        "reschedule_requests",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # --- appeals ---
    op.create_table(
        "appeals",
        sa.Column("appeal_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, index=True),
        sa.Column(
            "extra_parts_request_id", sa.String(36),
            sa.ForeignKey("extra_parts_requests.request_id"), nullable=False, unique=True,
        ),
        sa.Column("customer_id", sa.String(36), nullable=False),
        sa.Column("contractor_id", sa.String(36), nullable=False, index=True),
        sa.Column("reason", sa.String(1000), nullable=False),
        sa.Column("escrow_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("admin_response", sa.String(1000), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- payment_settlements ---
    op.create_table(
        "payment_settlements",
        sa.Column("settlement_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, unique=True),
        sa.Column("payer_id", sa.String(36), nullable=False),
        sa.Column("contractor_id", sa.String(36), nullable=False, index=True),
        sa.Column("base_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("extras_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("escrowed_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(30), nullable=False),
        sa.Column("payment_reference", sa.String(100), nullable=False),
        sa.Column("settled_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- booking_mutations ---
    op.create_table(
        "booking_mutations",
        sa.Column("mutation_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, index=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("action_type", sa.String(20), nullable=False),
        sa.Column("before_snapshot", sa.JSON, nullable=True),
        sa.Column("after_snapshot", sa.JSON, nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- reviews ---
    op.create_table(
        "reviews",
        sa.Column("review_id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.booking_id"), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(36), nullable=False, index=True),
        sa.Column("contractor_id", sa.String(36), nullable=False, index=True),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("punctuality_rating", sa.Integer, nullable=True),
        sa.Column("quality_rating", sa.Integer, nullable=True),
        sa.Column("professionalism_rating", sa.Integer, nullable=True),
        sa.Column("review_text", sa.String(2000), nullable=True),
        sa.Column("contractor_response", sa.String(2000), nullable=True),
        sa.Column("contractor_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="check_review_rating_range"),
        sa.CheckConstraint(
            "punctuality_rating IS NULL OR punctuality_rating BETWEEN 1 AND 5",
            name="check_review_punctuality_range",
        ),
        sa.CheckConstraint(
            "quality_rating IS NULL OR quality_rating BETWEEN 1 AND 5",
            name="check_review_quality_range",
        ),
        sa.CheckConstraint(
            "professionalism_rating IS NULL OR professionalism_rating BETWEEN 1 AND 5",
            name="check_review_professionalism_range",
        ),
    )


def downgrade() -> None:
    op.drop_table("reviews")
    op.drop_table("booking_mutations")
    op.drop_table("payment_settlements")
    op.drop_table("appeals")
    op.drop_index("uq_reschedule_one_pending_per_booking", table_name="reschedule_requests")
    op.drop_table("reschedule_requests")
    op.drop_table("extra_parts_requests")
    op.drop_index("uq_bids_one_pending_per_contractor", table_name="bids")
    op.drop_index("uq_bids_one_accepted_per_round", table_name="bids")
    op.drop_table("bids")
    op.drop_index("ix_bookings_stage_category", table_name="bookings")
    op.drop_table("bookings")
