from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Protocol

import httpx

from coupon_engine.core.dates import parse_utc_datetime


@dataclass(frozen=True, slots=True)
class PurchaseItem:
    category: str
    brand: str | None = None
    total_price: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    final_amount: Decimal
    created_at: datetime
    items: tuple[PurchaseItem, ...] = field(default_factory=tuple)
    purchase_id: str | None = None


class PurchaseHistoryQuery(Protocol):
    async def list_purchases(
        self,
        customer_id: str,
        *,
        since: datetime | None = None,
    ) -> list[PurchaseRecord]: ...


class HttpPurchaseLedger:
    def __init__(self, *, base_url: str, client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    async def list_purchases(
        self,
        customer_id: str,
        *,
        since: datetime | None = None,
    ) -> list[PurchaseRecord]:
        params = {"since": since.isoformat()} if since is not None else None
        response = await self._client.get(
            f"{self._base_url}/customers/{customer_id}/purchases",
            params=params,
        )
        response.raise_for_status()

        records = [
            PurchaseRecord(
                purchase_id=str(row["id"]) if row.get("id") is not None else None,
                final_amount=Decimal(str(row["finalAmount"])),
                created_at=parse_utc_datetime(str(row["createdAt"])),
                items=tuple(
                    PurchaseItem(
                        category=str(item.get("category") or ""),
                        brand=item.get("brand"),
                        total_price=Decimal(str(item.get("totalPrice") or 0)),
                    )
                    for item in row.get("items") or ()
                ),
            )
            for row in response.json()
        ]
        records.sort(key=lambda record: record.created_at)
        return records
