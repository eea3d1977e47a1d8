"""c1_coupon_engine_core_tables

Revision ID: 5c1e2f3a4b60
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e2f3a4b60"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "campaigns",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("title", sa.String(160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", sa.String(16), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_discount", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_purchase_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("targeting_type", sa.String(24), nullable=False),
        sa.Column("targeting", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("product_rule", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_redemptions", sa.Integer(), nullable=False, server_default=sa.text("1000")),
        sa.Column("current_redemptions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("per_user_limit", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "discount_type IN ('FIXED_AMOUNT','PERCENTAGE','FREE_ITEM')",
            name="ck_campaigns_discount_type",
        ),
        sa.CheckConstraint(
            "targeting_type IN ('ALL','GEOGRAPHIC','INDIVIDUAL','PURCHASE_HISTORY','REFERRAL')",
            name="ck_campaigns_targeting_type",
        ),
        sa.CheckConstraint(
            "status IN ('DRAFT','ACTIVE','PAUSED','EXPIRED','DELETED')",
            name="ck_campaigns_status",
        ),
        sa.CheckConstraint("discount_value >= 0", name="ck_campaigns_discount_value_non_negative"),
        sa.CheckConstraint("min_purchase_amount >= 0", name="ck_campaigns_min_purchase_non_negative"),
        sa.CheckConstraint("valid_from <= valid_until", name="ck_campaigns_validity_window"),
        sa.CheckConstraint("max_redemptions > 0", name="ck_campaigns_max_redemptions_positive"),
        sa.CheckConstraint(
            "current_redemptions >= 0",
            name="ck_campaigns_current_redemptions_non_negative",
        ),
        sa.CheckConstraint(
            "current_redemptions <= max_redemptions",
            name="ck_campaigns_current_redemptions_le_max",
        ),
        sa.CheckConstraint("per_user_limit >= 1", name="ck_campaigns_per_user_limit_positive"),
        sa.UniqueConstraint("code", name="uq_campaigns_code"),
    )
    op.create_index("idx_campaigns_status_valid_until", "campaigns", ["status", "valid_until"])
    op.create_index("idx_campaigns_targeting_type", "campaigns", ["targeting_type"])

    op.create_table(
        "entitlements",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("campaign_id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("unique_code", sa.String(32), nullable=False),
        sa.Column("qr_payload", sa.Text(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_store_id", sa.String(64), nullable=True),
        sa.Column("redeemed_staff_id", sa.String(64), nullable=True),
        sa.Column("redeemed_purchase_id", sa.String(64), nullable=True),
        sa.Column("amount_used", sa.Numeric(12, 2), nullable=True),
        sa.Column("redemption_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('ACTIVE','USED','EXPIRED','CANCELLED')",
            name="ck_entitlements_status",
        ),
        sa.CheckConstraint(
            "source IN ('CLAIM','ASSIGNMENT','REFERRAL')",
            name="ck_entitlements_source",
        ),
        sa.CheckConstraint(
            "(status = 'USED') = (redeemed_at IS NOT NULL)",
            name="ck_entitlements_redemption_record",
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.UniqueConstraint("unique_code", name="uq_entitlements_unique_code"),
        sa.UniqueConstraint("idempotency_key", name="uq_entitlements_idempotency_key"),
    )
    op.create_index("idx_entitlements_customer_status", "entitlements", ["customer_id", "status"])
    op.create_index("idx_entitlements_campaign_status", "entitlements", ["campaign_id", "status"])
    op.create_index("idx_entitlements_valid_until", "entitlements", ["valid_until"])
    op.create_index(
        "uq_entitlements_active_campaign_customer",
        "entitlements",
        ["campaign_id", "customer_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("referrer_id", sa.String(64), nullable=False),
        sa.Column("referrer_type", sa.String(16), nullable=False),
        sa.Column("referred_customer_id", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("referrer_reward_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("500")),
        sa.Column("referrer_reward_status", sa.String(16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("referrer_campaign_id", sa.Uuid(), nullable=True),
        sa.Column("referrer_entitlement_id", sa.Uuid(), nullable=True),
        sa.Column("referrer_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referrer_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referred_reward_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("300")),
        sa.Column("referred_reward_status", sa.String(16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("referred_campaign_id", sa.Uuid(), nullable=True),
        sa.Column("referred_entitlement_id", sa.Uuid(), nullable=True),
        sa.Column("referred_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referred_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referral_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("registration_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_purchase_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qualifying_purchase_id", sa.String(64), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('PENDING','REGISTERED','FIRST_PURCHASE','COMPLETED','EXPIRED')",
            name="ck_referrals_status",
        ),
        sa.CheckConstraint("referrer_type IN ('CUSTOMER','STAFF')", name="ck_referrals_referrer_type"),
        sa.CheckConstraint(
            "referrer_reward_status IN ('PENDING','ISSUED','CLAIMED')",
            name="ck_referrals_referrer_reward_status",
        ),
        sa.CheckConstraint(
            "referred_reward_status IN ('PENDING','ISSUED','CLAIMED')",
            name="ck_referrals_referred_reward_status",
        ),
        sa.CheckConstraint("referrer_id <> referred_customer_id", name="ck_referrals_no_self_referral"),
        sa.CheckConstraint(
            "status <> 'COMPLETED' OR completion_date IS NOT NULL",
            name="ck_referrals_completed_has_date",
        ),
        sa.ForeignKeyConstraint(["referrer_campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["referrer_entitlement_id"], ["entitlements.id"]),
        sa.ForeignKeyConstraint(["referred_campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["referred_entitlement_id"], ["entitlements.id"]),
        sa.UniqueConstraint("referred_customer_id", name="uq_referrals_referred_customer_id"),
    )
    op.create_index("idx_referrals_referrer", "referrals", ["referrer_id"])
    op.create_index("idx_referrals_status_expires", "referrals", ["status", "expires_at"])


def downgrade() -> None:
    op.drop_index("idx_referrals_status_expires", table_name="referrals")
    op.drop_index("idx_referrals_referrer", table_name="referrals")
    op.drop_table("referrals")

    op.drop_index("uq_entitlements_active_campaign_customer", table_name="entitlements")
    op.drop_index("idx_entitlements_valid_until", table_name="entitlements")
    op.drop_index("idx_entitlements_campaign_status", table_name="entitlements")
    op.drop_index("idx_entitlements_customer_status", table_name="entitlements")
    op.drop_table("entitlements")

    op.drop_index("idx_campaigns_targeting_type", table_name="campaigns")
    op.drop_index("idx_campaigns_status_valid_until", table_name="campaigns")
    op.drop_table("campaigns")
