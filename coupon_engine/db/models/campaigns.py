from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from coupon_engine.db.models.base import Base, JSONDocument, UtcDateTime


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        CheckConstraint(
            "discount_type IN ('FIXED_AMOUNT','PERCENTAGE','FREE_ITEM')",
            name="ck_campaigns_discount_type",
        ),
        CheckConstraint(
            "targeting_type IN ('ALL','GEOGRAPHIC','INDIVIDUAL','PURCHASE_HISTORY','REFERRAL')",
            name="ck_campaigns_targeting_type",
        ),
        CheckConstraint(
            "status IN ('DRAFT','ACTIVE','PAUSED','EXPIRED','DELETED')",
            name="ck_campaigns_status",
        ),
        CheckConstraint("discount_value >= 0", name="ck_campaigns_discount_value_non_negative"),
        CheckConstraint("min_purchase_amount >= 0", name="ck_campaigns_min_purchase_non_negative"),
        CheckConstraint("valid_from <= valid_until", name="ck_campaigns_validity_window"),
        CheckConstraint("max_redemptions > 0", name="ck_campaigns_max_redemptions_positive"),
        CheckConstraint(
            "current_redemptions >= 0",
            name="ck_campaigns_current_redemptions_non_negative",
        ),
        CheckConstraint(
            "current_redemptions <= max_redemptions",
            name="ck_campaigns_current_redemptions_le_max",
        ),
        CheckConstraint("per_user_limit >= 1", name="ck_campaigns_per_user_limit_positive"),
        Index("idx_campaigns_status_valid_until", "status", "valid_until"),
        Index("idx_campaigns_targeting_type", "targeting_type"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(160), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_type: Mapped[str] = mapped_column(String(16), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_discount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    min_purchase_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, server_default=text("0")
    )
    targeting_type: Mapped[str] = mapped_column(String(24), nullable=False)
    targeting: Mapped[dict[str, object]] = mapped_column(JSONDocument, nullable=False)
    product_rule: Mapped[dict[str, object]] = mapped_column(JSONDocument, nullable=False)
    valid_from: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    max_redemptions: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("1000")
    )
    current_redemptions: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default=text("0")
    )
    per_user_limit: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
