"""Reply matching and answer extraction for emailed form responses.

Pure functions with no I/O. Matching is conservative on purpose: a match leads
to an irreversible completion, so anything doubtful is left for the next poll
or for manual review.
"""

from __future__ import annotations

import json
import re
from email.utils import parseaddr
from typing import Any, Protocol

from formrelay.core.config import settings
from formrelay.utils.normalization import field_key_variants, normalize_email, normalize_key

_KEY_VALUE_LINE = re.compile(r"^([^:]{1,64}?)\s*:\s*(.+?)\s*$")
_QUOTED_REPLY_HEADER = re.compile(r"^on\b.+\bwrote:$", re.IGNORECASE)
_REPLY_SEPARATORS = (
    "-----original message-----",
    "________________________________",
)
_LIST_SPLIT = re.compile(r"[,;\n]")
# Unfilled example lines from the invitation ("Email: ...").
_PLACEHOLDER_VALUE = re.compile(r"^[.\u2026_\s-]+$")


class _MessageLike(Protocol):
    subject: str
    sender: str


class _FormLike(Protocol):
    candidate_email: str
    reply_subject: str | None


def sender_address(sender: str | None) -> str | None:
    """Bare, lowercased address from a From header value."""
    if not sender:
        return None
    _, address = parseaddr(sender)
    return normalize_email(address)


def is_likely_reply(
    message: _MessageLike,
    form: _FormLike,
    subject_fragment: str | None = None,
) -> bool:
    """
    True when ``message`` looks like the candidate answering ``form``.

    Both must hold: the sender address equals the form's candidate address,
    and the subject contains the fragment the form was sent with (case-insensitive).
    """
    expected_sender = normalize_email(form.candidate_email)
    if not expected_sender or sender_address(message.sender) != expected_sender:
        return False
    fragment = (
        subject_fragment or form.reply_subject or settings.FORM_REPLY_SUBJECT_FRAGMENT
    ).strip().lower()
    if not fragment:
        return False
    return fragment in (message.subject or "").lower()


def _find_json_object(body: str) -> dict[str, Any] | None:
    """First parseable, non-empty JSON object embedded anywhere in ``body``."""
    decoder = json.JSONDecoder()
    index = body.find("{")
    while index != -1:
        try:
            value, _ = decoder.raw_decode(body, index)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict) and value:
            return value
        index = body.find("{", index + 1)
    return None


def _parse_key_value_lines(body: str) -> dict[str, str]:
    answers: dict[str, str] = {}
    for line in body.splitlines():
        stripped = line.strip()
        lowered = stripped.lower()
        # Everything below the quoted original is the form email, not the answer.
        if _QUOTED_REPLY_HEADER.match(stripped) or lowered.startswith(_REPLY_SEPARATORS):
            break
        if not stripped or stripped.startswith(">"):
            continue
        match = _KEY_VALUE_LINE.match(stripped)
        if not match:
            continue
        key = normalize_key(match.group(1))
        value = match.group(2).strip()
        # "https://..." on its own line splits into key "https", value "//..."
        if not key or not value or value.startswith("//"):
            continue
        if _PLACEHOLDER_VALUE.match(value):
            continue
        answers.setdefault(key, value)
    return answers


def extract_answers(body: str | None) -> dict[str, Any] | None:
    """
    Pull structured answers out of a reply body.

    An embedded JSON object wins and is returned as-is. Otherwise ``Key: value``
    lines are collected with keys normalized to snake_case. Returns None when
    neither yields a single key.
    """
    if not body:
        return None
    embedded = _find_json_object(body)
    if embedded:
        return embedded
    return _parse_key_value_lines(body) or None


def _coerce_option(value: Any, options: list[str]) -> Any:
    if not isinstance(value, str):
        return value
    lookup = {option.lower(): option for option in options}
    return lookup.get(value.strip().lower(), value.strip())


def map_answers_to_fields(answers: dict[str, Any], fields: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Re-key extracted answers onto the form's field ids.

    Keys match a field by its id or label after normalization. Option values
    are matched case-insensitively and checkbox answers given as text are split
    into a list. Unrecognized keys pass through unchanged.
    """
    by_key: dict[str, dict[str, Any]] = {}
    for field in fields:
        for variant in field_key_variants(field["id"], field.get("label")):
            by_key.setdefault(variant, field)

    mapped: dict[str, Any] = {}
    for raw_key, value in answers.items():
        field = by_key.get(normalize_key(str(raw_key)))
        if field is None:
            mapped.setdefault(str(raw_key), value)
            continue
        options = field.get("options") or []
        if field.get("type") == "checkbox":
            items = value if isinstance(value, list) else _LIST_SPLIT.split(str(value))
            value = [_coerce_option(item, options) for item in items if str(item).strip()]
        elif options:
            value = _coerce_option(value, options)
        elif isinstance(value, str):
            value = value.strip()
        mapped[field["id"]] = value
    return mapped
