"""Normalization helpers for addresses and answer keys."""

import re
from typing import Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and trim an email address, or None if empty."""
    if not email:
        return None
    normalized = email.strip().lower()
    return normalized or None


def normalize_key(raw: Optional[str]) -> str:
    """
    Normalize a free-text label into a snake_case key.

    "Full Name" -> "full_name", "Visa Status:" -> "visa_status".
    """
    if not raw:
        return ""
    return _NON_ALNUM.sub("_", raw.strip().lower()).strip("_")


def field_key_variants(field_id: str, label: str | None = None) -> set[str]:
    """Keys a reply might use for a field: its id (camelCase-aware) and label."""
    variants = {normalize_key(field_id), normalize_key(_CAMEL_BOUNDARY.sub("_", field_id))}
    if label:
        variants.add(normalize_key(label))
    variants.discard("")
    return variants
