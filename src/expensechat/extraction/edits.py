"""Detection of targeted field edits ("change the amount to $42")."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldEdit:
    """A request to change one draft field.

    Attributes:
        field: Draft field name (``date``, ``amount``, ``merchant``,
            ``description``, ``category``, ``payment_method`` or ``notes``).
        value: Raw text of the new value, or ``None`` when the utterance
            named the field without giving a value.
    """

    field: str
    value: str | None = None


EDIT_FIELDS = (
    "date",
    "amount",
    "merchant",
    "description",
    "category",
    "payment_method",
    "notes",
)

_EDIT_VERB = re.compile(r"\b(?:change|edit|update|set|fix|correct)\b", re.IGNORECASE)

# Evaluated in order; the first field whose keyword appears wins.
FIELD_KEYWORDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("date", re.compile(r"\bdate\b", re.IGNORECASE)),
    ("amount", re.compile(r"\b(?:amount|price|cost|total)\b", re.IGNORECASE)),
    ("merchant", re.compile(r"\b(?:merchant|store|shop|vendor)\b", re.IGNORECASE)),
    ("description", re.compile(r"\b(?:description|item|product)\b", re.IGNORECASE)),
    ("category", re.compile(r"\bcategory\b", re.IGNORECASE)),
    ("payment_method", re.compile(r"\b(?:payment(?:\s+method)?|card|method)\b", re.IGNORECASE)),
    ("notes", re.compile(r"\bnotes?\b", re.IGNORECASE)),
)

# "amount: 42", "payment method: Visa"
_PREFIX = re.compile(
    r"^\s*(date|amount|merchant|description|category|payment(?:[\s_]+method)?|notes?)\s*[:=]\s*(.*)$",
    re.IGNORECASE | re.DOTALL,
)

_VALUE = re.compile(r"(?:\b(?:to|as|is|into)\b|[:=])\s*(.+?)\s*[.!]?\s*$", re.IGNORECASE | re.DOTALL)


def _canonical_field(raw: str) -> str:
    raw = raw.lower()
    if raw.startswith("payment"):
        return "payment_method"
    if raw.startswith("note"):
        return "notes"
    return raw


def detect_field_edit(text: str) -> FieldEdit | None:
    """Detect an instruction to change a single draft field.

    Recognizes an edit verb (change, edit, update, set, fix) together with a
    field keyword, or the ``field: value`` prefix syntax.

    Args:
        text: The raw utterance.

    Returns:
        A :class:`FieldEdit`, or ``None`` when *text* is not an edit.
    """
    prefix = _PREFIX.match(text)
    if prefix is not None:
        value = prefix.group(2).strip()
        return FieldEdit(field=_canonical_field(prefix.group(1)), value=value or None)

    if not _EDIT_VERB.search(text):
        return None

    for field, pattern in FIELD_KEYWORDS:
        keyword = pattern.search(text)
        if keyword is None:
            continue
        value_match = _VALUE.search(text, keyword.end())
        value = value_match.group(1).strip() if value_match else None
        logger.debug("Detected edit of %s (value=%r)", field, value)
        return FieldEdit(field=field, value=value or None)

    return None


def detect_field_name(text: str) -> str | None:
    """Return the draft field named in *text* ("the amount", "category"), if any."""
    prefix = _PREFIX.match(text)
    if prefix is not None:
        return _canonical_field(prefix.group(1))
    for field, pattern in FIELD_KEYWORDS:
        if pattern.search(text):
            return field
    return None
