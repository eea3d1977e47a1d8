from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from coupon_engine.promotions.errors import CouponValidationError

_SIGNATURE_SEPARATOR = "."
_BASE64URL_ALPHABET = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")
# unpadded base64url of a SHA-256 digest
_SIGNATURE_LENGTH = 43


@dataclass(frozen=True, slots=True)
class QrPayload:
    entitlement_id: UUID
    customer_id: str
    campaign_id: UUID
    unique_code: str
    issued_at: datetime


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _is_base64url(value: str) -> bool:
    return bool(value) and all(char in _BASE64URL_ALPHABET for char in value)


def _sign(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256)
    return _b64encode(digest.digest())


def encode_qr_payload(payload: QrPayload, *, secret: str) -> str:
    document = {
        "entitlementId": str(payload.entitlement_id),
        "customerId": payload.customer_id,
        "campaignId": str(payload.campaign_id),
        "uniqueCode": payload.unique_code,
        "issuedAt": int(payload.issued_at.timestamp() * 1000),
    }
    body = _b64encode(json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}{_SIGNATURE_SEPARATOR}{_sign(body, secret)}"


def decode_qr_payload(raw: str, *, secret: str) -> QrPayload:
    """Decodes a scanned payload and verifies its signature.

    Raises CouponValidationError for anything that is not a payload this engine issued.
    """
    candidate = raw.strip()
    body, separator, signature = candidate.rpartition(_SIGNATURE_SEPARATOR)
    if not separator or not _is_base64url(body) or not _is_base64url(signature):
        raise CouponValidationError("Invalid QR code format")
    if not hmac.compare_digest(_sign(body, secret).encode("ascii"), signature.encode("ascii")):
        raise CouponValidationError("Invalid QR code signature")

    try:
        document = json.loads(_b64decode(body))
        return QrPayload(
            entitlement_id=UUID(str(document["entitlementId"])),
            customer_id=str(document["customerId"]),
            campaign_id=UUID(str(document["campaignId"])),
            unique_code=str(document["uniqueCode"]),
            issued_at=datetime.fromtimestamp(int(document["issuedAt"]) / 1000, tz=timezone.utc),
        )
    except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError) as exc:
        raise CouponValidationError("Invalid QR code format") from exc


def looks_like_qr_payload(raw: str) -> bool:
    body, separator, signature = raw.strip().partition(_SIGNATURE_SEPARATOR)
    return (
        bool(separator)
        and _is_base64url(body)
        and _is_base64url(signature)
        and len(signature) == _SIGNATURE_LENGTH
    )
