from __future__ import annotations

from typing import Protocol

import httpx
import structlog

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    async def notify(self, customer_id: str, title: str, body: str) -> None: ...


class LoggingNotifier:
    async def notify(self, customer_id: str, title: str, body: str) -> None:
        logger.info("customer_notification", customer_id=customer_id, title=title, body=body)


class WebhookNotifier:
    def __init__(self, *, url: str, client: httpx.AsyncClient) -> None:
        self._url = url
        self._client = client

    async def notify(self, customer_id: str, title: str, body: str) -> None:
        response = await self._client.post(
            self._url,
            json={"customerId": customer_id, "title": title, "body": body},
        )
        response.raise_for_status()


async def dispatch_notification(
    notifier: Notifier,
    *,
    customer_id: str,
    title: str,
    body: str,
    event: str,
) -> bool:
    try:
        await notifier.notify(customer_id, title, body)
        return True
    except Exception:
        logger.exception(
            "customer_notification_failed",
            notification_event=event,
            customer_id=customer_id,
        )
        return False
