from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

CENTS = Decimal("0.01")
TIME_FRAME_DAYS: dict[str, int | None] = {
    "LAST_7_DAYS": 7,
    "LAST_30_DAYS": 30,
    "LAST_90_DAYS": 90,
    "ALL_TIME": None,
}


class DiscountType(str, Enum):
    FIXED_AMOUNT = "FIXED_AMOUNT"
    PERCENTAGE = "PERCENTAGE"
    FREE_ITEM = "FREE_ITEM"


class TargetingType(str, Enum):
    ALL = "ALL"
    GEOGRAPHIC = "GEOGRAPHIC"
    INDIVIDUAL = "INDIVIDUAL"
    PURCHASE_HISTORY = "PURCHASE_HISTORY"
    REFERRAL = "REFERRAL"


class _Rule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AllTargeting(_Rule):
    type: Literal["ALL"] = "ALL"


class GeographicTargeting(_Rule):
    type: Literal["GEOGRAPHIC"] = "GEOGRAPHIC"
    cities: tuple[str, ...] = ()
    areas: tuple[str, ...] = ()
    stores: tuple[str, ...] = ()


class IndividualTargeting(_Rule):
    type: Literal["INDIVIDUAL"] = "INDIVIDUAL"
    customer_ids: tuple[str, ...] = ()


class PurchaseHistoryTargeting(_Rule):
    type: Literal["PURCHASE_HISTORY"] = "PURCHASE_HISTORY"
    min_purchases: int | None = Field(default=None, ge=0)
    categories: tuple[str, ...] = ()
    min_total_spent: Decimal | None = Field(default=None, ge=0)
    time_frame: Literal["LAST_7_DAYS", "LAST_30_DAYS", "LAST_90_DAYS", "ALL_TIME"] | None = None

    @property
    def lookback(self) -> timedelta | None:
        if self.time_frame is None:
            return None
        days = TIME_FRAME_DAYS[self.time_frame]
        return timedelta(days=days) if days is not None else None


class ReferralTargeting(_Rule):
    type: Literal["REFERRAL"] = "REFERRAL"


Targeting = Annotated[
    Union[
        AllTargeting,
        GeographicTargeting,
        IndividualTargeting,
        PurchaseHistoryTargeting,
        ReferralTargeting,
    ],
    Field(discriminator="type"),
]


class AllProductsRule(_Rule):
    type: Literal["ALL_PRODUCTS"] = "ALL_PRODUCTS"


class CategoryRule(_Rule):
    type: Literal["CATEGORY"] = "CATEGORY"
    categories: tuple[str, ...] = ()


class ProductRule(_Rule):
    type: Literal["PRODUCT"] = "PRODUCT"
    product_ids: tuple[str, ...] = ()


class BrandRule(_Rule):
    type: Literal["BRAND"] = "BRAND"
    brands: tuple[str, ...] = ()


ProductApplicability = Annotated[
    Union[AllProductsRule, CategoryRule, ProductRule, BrandRule],
    Field(discriminator="type"),
]

_TARGETING_ADAPTER: TypeAdapter[Targeting] = TypeAdapter(Targeting)
_PRODUCT_RULE_ADAPTER: TypeAdapter[ProductApplicability] = TypeAdapter(ProductApplicability)


def parse_targeting(payload: dict[str, Any] | None) -> Targeting:
    return _TARGETING_ADAPTER.validate_python(payload or {"type": "ALL"})


def parse_product_rule(payload: dict[str, Any] | None) -> ProductApplicability:
    return _PRODUCT_RULE_ADAPTER.validate_python(payload or {"type": "ALL_PRODUCTS"})


def dump_rule(rule: _Rule) -> dict[str, Any]:
    return rule.model_dump(mode="json")


def product_restrictions(rule: ProductApplicability) -> dict[str, Any]:
    return {
        "type": rule.type,
        "allowed": rule.type == "ALL_PRODUCTS",
        "categories": list(getattr(rule, "categories", ())),
        "products": list(getattr(rule, "product_ids", ())),
        "brands": list(getattr(rule, "brands", ())),
    }


def calculate_discount(
    *,
    discount_type: str,
    value: Decimal,
    purchase_amount: Decimal,
    max_discount: Decimal | None = None,
) -> Decimal:
    """Advisory discount for a purchase; the caller applies it to the sale total."""
    if purchase_amount <= 0:
        return Decimal("0.00")

    kind = DiscountType(discount_type)
    if kind is DiscountType.FIXED_AMOUNT:
        discount = min(value, purchase_amount)
    elif kind is DiscountType.PERCENTAGE:
        discount = purchase_amount * value / Decimal(100)
        if max_discount is not None:
            discount = min(discount, max_discount)
    else:
        discount = Decimal("0")

    return max(discount, Decimal("0")).quantize(CENTS, rounding=ROUND_HALF_UP)
