from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CustomerProfile:
    id: str
    city: str = ""
    area: str = ""
    name: str | None = None
    mobile: str | None = None


@dataclass(frozen=True, slots=True)
class StoreInfo:
    id: str
    name: str
    city: str = ""
    area: str = ""
    address: str | None = None


class CustomerDirectory(Protocol):
    async def get_customer(self, customer_id: str) -> CustomerProfile | None: ...


class StoreDirectory(Protocol):
    async def get_store(self, store_id: str) -> StoreInfo | None: ...


async def _get_json(client: httpx.AsyncClient, url: str) -> dict[str, Any] | None:
    response = await client.get(url)
    if response.status_code == 404:
        return None
    response.raise_for_status()
    return response.json()


class HttpCustomerDirectory:
    def __init__(self, *, base_url: str, client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    async def get_customer(self, customer_id: str) -> CustomerProfile | None:
        body = await _get_json(self._client, f"{self._base_url}/customers/{customer_id}")
        if body is None:
            logger.info("customer_directory_miss", customer_id=customer_id)
            return None
        return CustomerProfile(
            id=str(body.get("id", customer_id)),
            city=str(body.get("city") or ""),
            area=str(body.get("area") or ""),
            name=body.get("name"),
            mobile=body.get("mobile"),
        )


class HttpStoreDirectory:
    def __init__(self, *, base_url: str, client: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client

    async def get_store(self, store_id: str) -> StoreInfo | None:
        body = await _get_json(self._client, f"{self._base_url}/stores/{store_id}")
        if body is None:
            return None
        location = body.get("location") or {}
        return StoreInfo(
            id=str(body.get("id", store_id)),
            name=str(body.get("name") or store_id),
            city=str(location.get("city") or ""),
            area=str(location.get("area") or ""),
            address=location.get("address"),
        )
