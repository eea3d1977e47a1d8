from __future__ import annotations

from datetime import datetime, timedelta

from coupon_engine.services.customer_directory import CustomerProfile, StoreInfo
from coupon_engine.services.purchase_ledger import PurchaseRecord

TEST_QR_SECRET = "test-qr-secret"


class FakeCustomerDirectory:
    def __init__(self) -> None:
        self.customers: dict[str, CustomerProfile] = {}

    def add(self, customer_id: str, *, city: str = "Mumbai", area: str = "Andheri") -> CustomerProfile:
        profile = CustomerProfile(id=customer_id, city=city, area=area, name=f"Customer {customer_id}")
        self.customers[customer_id] = profile
        return profile

    async def get_customer(self, customer_id: str) -> CustomerProfile | None:
        return self.customers.get(customer_id)


class FakeStoreDirectory:
    async def get_store(self, store_id: str) -> StoreInfo | None:
        return StoreInfo(id=store_id, name=f"Store {store_id}")


class FakePurchaseHistory:
    def __init__(self) -> None:
        self.purchases: dict[str, list[PurchaseRecord]] = {}
        self.calls = 0

    def add(self, customer_id: str, record: PurchaseRecord) -> None:
        self.purchases.setdefault(customer_id, []).append(record)

    async def list_purchases(
        self,
        customer_id: str,
        *,
        since: datetime | None = None,
    ) -> list[PurchaseRecord]:
        self.calls += 1
        records = self.purchases.get(customer_id, [])
        if since is None:
            return list(records)
        return [record for record in records if record.created_at >= since]


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    async def notify(self, customer_id: str, title: str, body: str) -> None:
        if self.fail:
            raise RuntimeError("notification gateway down")
        self.sent.append((customer_id, title, body))


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta

    def __call__(self) -> datetime:
        return self.now

