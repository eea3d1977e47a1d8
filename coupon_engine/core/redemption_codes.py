from __future__ import annotations

import re
import secrets

ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
_WHITESPACE_RE = re.compile(r"\s+")


def generate_redemption_code(prefix: str = "RK", *, group_lengths: tuple[int, ...] = (3, 4)) -> str:
    """Generates a human-typeable code such as ``RK-7QX-M4TZ`` with low typo ambiguity."""
    if not group_lengths or any(length <= 0 for length in group_lengths):
        raise ValueError("group lengths must be positive")
    groups = ["".join(secrets.choice(ALPHABET) for _ in range(length)) for length in group_lengths]
    if prefix:
        groups.insert(0, prefix.upper())
    return "-".join(groups)


def normalize_redemption_code(raw_code: str) -> str:
    return _WHITESPACE_RE.sub("", raw_code).upper()


def normalize_campaign_code(raw_code: str) -> str:
    return raw_code.strip().upper()
