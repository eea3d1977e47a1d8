from datetime import datetime, timezone
from uuid import uuid4

import pytest

from coupon_engine.promotions.errors import CouponValidationError
from coupon_engine.services.qr_payloads import (
    QrPayload,
    decode_qr_payload,
    encode_qr_payload,
    looks_like_qr_payload,
)

UTC = timezone.utc


def _payload() -> QrPayload:
    return QrPayload(
        entitlement_id=uuid4(),
        customer_id="cust-42",
        campaign_id=uuid4(),
        unique_code="RK-7QX-M4TZ",
        issued_at=datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC),
    )


def test_encoded_payload_decodes_to_same_identity() -> None:
    payload = _payload()
    raw = encode_qr_payload(payload, secret="s3cret")

    assert looks_like_qr_payload(raw)
    assert decode_qr_payload(raw, secret="s3cret") == payload


def test_tampered_payload_is_rejected() -> None:
    raw = encode_qr_payload(_payload(), secret="s3cret")
    body, signature = raw.split(".")
    forged_body = body[:-1] + ("A" if body[-1] != "A" else "B")
    forged = f"{forged_body}.{signature}"

    with pytest.raises(CouponValidationError, match="Invalid QR code signature"):
        decode_qr_payload(forged, secret="s3cret")


def test_payload_signed_with_other_secret_is_rejected() -> None:
    raw = encode_qr_payload(_payload(), secret="other")

    with pytest.raises(CouponValidationError):
        decode_qr_payload(raw, secret="s3cret")


@pytest.mark.parametrize("raw", ["", "not-a-qr", ".sig", "body.", "café.abc", "abc.sïg", "abc.s+g/"])
def test_malformed_payload_reports_invalid_format(raw: str) -> None:
    with pytest.raises(CouponValidationError, match="Invalid QR code format"):
        decode_qr_payload(raw, secret="s3cret")


def test_manual_code_is_not_mistaken_for_payload() -> None:
    assert not looks_like_qr_payload("RK-7QX-M4TZ")


@pytest.mark.parametrize("raw", ["RK-7QX.M4TZ", "café.abc", "abc.sïg", "body.", ".sig"])
def test_typed_codes_with_dots_are_not_treated_as_payloads(raw: str) -> None:
    assert not looks_like_qr_payload(raw)
