from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

from fastapi.testclient import TestClient

from coupon_engine.api.routes import internal_coupons_helpers
from coupon_engine.api.routes.internal_coupons_helpers import get_coupon_engine
from coupon_engine.main import app


def _settings(allowlist: str) -> SimpleNamespace:
    return SimpleNamespace(
        internal_api_token="internal-secret",
        internal_api_allowlist=allowlist,
        internal_api_trusted_proxies="",
    )


def test_internal_coupons_rejects_missing_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_coupons_helpers, "get_settings", lambda: _settings("127.0.0.1/32"))
    monkeypatch.setitem(app.dependency_overrides, get_coupon_engine, lambda: object())

    client = TestClient(app)
    response = client.post(
        "/internal/coupons/redeem",
        json={
            "entitlement_id": str(uuid4()),
            "store_id": "s-1",
            "staff_id": "st-1",
            "purchase_id": "p-1",
            "amount_used": "10",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_coupons_rejects_wrong_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_coupons_helpers, "get_settings", lambda: _settings("127.0.0.1/32"))
    monkeypatch.setitem(app.dependency_overrides, get_coupon_engine, lambda: object())

    client = TestClient(app)
    response = client.get(
        "/internal/coupons/campaigns",
        headers={"X-Internal-Token": "guess"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_coupons_rejects_disallowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(internal_coupons_helpers, "get_settings", lambda: _settings("192.168.0.0/16"))
    monkeypatch.setitem(app.dependency_overrides, get_coupon_engine, lambda: object())

    client = TestClient(app)
    response = client.post(
        "/internal/coupons/validate",
        json={"code": "RK-ABC-DEFG"},
        headers={
            "X-Internal-Token": "internal-secret",
            "X-Forwarded-For": "10.0.0.25",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_coupons_reports_missing_engine(monkeypatch) -> None:
    monkeypatch.setattr(internal_coupons_helpers, "get_settings", lambda: _settings("127.0.0.1/32"))
    monkeypatch.setattr(app.state, "coupon_engine", None, raising=False)

    client = TestClient(app)
    response = client.get(
        "/internal/coupons/campaigns",
        headers={"X-Internal-Token": "internal-secret"},
    )

    assert response.status_code == 503
    assert response.json() == {"detail": {"code": "E_ENGINE_UNAVAILABLE"}}
