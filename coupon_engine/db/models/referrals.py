from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from coupon_engine.db.models.base import Base, UtcDateTime


class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','REGISTERED','FIRST_PURCHASE','COMPLETED','EXPIRED')",
            name="ck_referrals_status",
        ),
        CheckConstraint("referrer_type IN ('CUSTOMER','STAFF')", name="ck_referrals_referrer_type"),
        CheckConstraint(
            "referrer_reward_status IN ('PENDING','ISSUED','CLAIMED')",
            name="ck_referrals_referrer_reward_status",
        ),
        CheckConstraint(
            "referred_reward_status IN ('PENDING','ISSUED','CLAIMED')",
            name="ck_referrals_referred_reward_status",
        ),
        CheckConstraint(
            "referrer_id <> referred_customer_id",
            name="ck_referrals_no_self_referral",
        ),
        CheckConstraint(
            "status <> 'COMPLETED' OR completion_date IS NOT NULL",
            name="ck_referrals_completed_has_date",
        ),
        Index("idx_referrals_referrer", "referrer_id"),
        Index("idx_referrals_status_expires", "status", "expires_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    referrer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    referrer_type: Mapped[str] = mapped_column(String(16), nullable=False)
    referred_customer_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)

    referrer_reward_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, server_default=text("500")
    )
    referrer_reward_status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'PENDING'")
    )
    referrer_campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=True
    )
    referrer_entitlement_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("entitlements.id"), nullable=True
    )
    referrer_issued_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    referrer_claimed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)

    referred_reward_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, server_default=text("300")
    )
    referred_reward_status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'PENDING'")
    )
    referred_campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=True
    )
    referred_entitlement_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("entitlements.id"), nullable=True
    )
    referred_issued_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    referred_claimed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)

    referral_date: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    registration_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    first_purchase_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    qualifying_purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
