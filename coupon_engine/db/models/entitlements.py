from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from coupon_engine.db.models.base import Base, UtcDateTime


class Entitlement(Base):
    __tablename__ = "entitlements"
    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE','USED','EXPIRED','CANCELLED')",
            name="ck_entitlements_status",
        ),
        CheckConstraint(
            "source IN ('CLAIM','ASSIGNMENT','REFERRAL')",
            name="ck_entitlements_source",
        ),
        CheckConstraint(
            "(status = 'USED') = (redeemed_at IS NOT NULL)",
            name="ck_entitlements_redemption_record",
        ),
        Index("idx_entitlements_customer_status", "customer_id", "status"),
        Index("idx_entitlements_campaign_status", "campaign_id", "status"),
        Index("idx_entitlements_valid_until", "valid_until"),
        Index(
            "uq_entitlements_active_campaign_customer",
            "campaign_id",
            "customer_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    campaign_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unique_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    qr_payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(128), unique=True, nullable=True)
    valid_from: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    valid_until: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    redeemed_at: Mapped[datetime | None] = mapped_column(UtcDateTime, nullable=True)
    redeemed_store_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    redeemed_staff_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    redeemed_purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount_used: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    redemption_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False)
