import json

import httpx
import pytest

from coupon_engine.services.notifications import WebhookNotifier, dispatch_notification


class _BrokenNotifier:
    async def notify(self, customer_id: str, title: str, body: str) -> None:
        raise RuntimeError("gateway down")


@pytest.mark.asyncio
async def test_dispatch_notification_swallows_notifier_failure() -> None:
    delivered = await dispatch_notification(
        _BrokenNotifier(),
        customer_id="c-1",
        title="Coupon Claimed!",
        body="body",
        event="coupon_claimed",
    )
    assert delivered is False


@pytest.mark.asyncio
async def test_webhook_notifier_posts_json_payload() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = WebhookNotifier(url="https://notify.example/hooks", client=client)
        delivered = await dispatch_notification(
            notifier,
            customer_id="c-7",
            title="Coupon Redeemed",
            body="Thanks",
            event="coupon_redeemed",
        )

    assert delivered is True
    assert captured[0].url == "https://notify.example/hooks"
    assert json.loads(captured[0].content) == {"customerId": "c-7", "title": "Coupon Redeemed", "body": "Thanks"}
