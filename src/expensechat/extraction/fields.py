"""Field extractors for free-form expense utterances.

Each extractor takes the raw utterance and returns the extracted value or
``None``; a miss is never an exception.  Extractors are independent of each
other: a single utterance may yield a date, an amount, a merchant and a
description at the same time, and the caller decides which to invoke.

Every extractor is an ordered tuple of :class:`Rule` objects evaluated
short-circuit, so rule priority is exactly the tuple order.  A rule whose
builder returns ``None`` (e.g. ``31/04/2025``) lets the next rule try.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Rule(Generic[T]):
    """A named pattern plus the function that turns its match into a value.

    Attributes:
        name: Short label used in debug logs.
        pattern: Compiled regex searched against the utterance.
        build: Converts the match into a value, given the reference date.
            Returning ``None`` rejects the match.
    """

    name: str
    pattern: re.Pattern[str]
    build: Callable[[re.Match[str], date], T | None]


def _first_match(rules: Sequence[Rule[T]], text: str, today: date) -> T | None:
    """Evaluate *rules* in order and return the first accepted value."""
    for rule in rules:
        match = rule.pattern.search(text)
        if match is None:
            continue
        value = rule.build(match, today)
        if value is not None:
            logger.debug("Rule %s matched %r -> %r", rule.name, match.group(0), value)
            return value
    return None


# ── Dates ─────────────────────────────────────────────────────────────────────

_MONTH_NAMES = (
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
)

MONTHS: dict[str, int] = {}
for _i, _name in enumerate(_MONTH_NAMES, 1):
    MONTHS[_name] = _i
    MONTHS[_name[:3]] = _i
MONTHS["sept"] = 9

# Longest names first so "september" wins over "sep".
_MONTH_RE = "|".join(sorted(MONTHS, key=len, reverse=True))
_ORDINAL = r"(?:st|nd|rd|th)?"


def _calendar_date(year: int, month: int, day: int) -> date | None:
    """Build a real calendar date; impossible dates are a miss, not clamped."""
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _days_before(today: date, days: int) -> date | None:
    try:
        return today - timedelta(days=days)
    except OverflowError:
        return None


def _day_month_name(m: re.Match[str], today: date) -> date | None:
    year = int(m.group(3)) if m.group(3) else today.year
    return _calendar_date(year, MONTHS[m.group(2).lower()], int(m.group(1)))


def _month_name_day(m: re.Match[str], today: date) -> date | None:
    year = int(m.group(3)) if m.group(3) else today.year
    return _calendar_date(year, MONTHS[m.group(1).lower()], int(m.group(2)))


DATE_RULES: tuple[Rule[date], ...] = (
    Rule(
        "yesterday",
        re.compile(r"\byesterday\b", re.IGNORECASE),
        lambda m, today: today - timedelta(days=1),
    ),
    Rule(
        "today",
        re.compile(r"\btoday\b", re.IGNORECASE),
        lambda m, today: today,
    ),
    Rule(
        "days_ago",
        re.compile(r"\b(\d{1,5})\s*days?\s*ago\b", re.IGNORECASE),
        lambda m, today: _days_before(today, int(m.group(1))),
    ),
    Rule(
        "last_week",
        re.compile(r"\blast\s+week\b", re.IGNORECASE),
        lambda m, today: today - timedelta(days=7),
    ),
    # "29th Sep 2025", "29 September", "3rd of March, 2024"
    Rule(
        "day_month_name",
        re.compile(
            rf"\b(\d{{1,2}}){_ORDINAL}\s+(?:of\s+)?({_MONTH_RE})\.?(?:,?\s+(\d{{4}}))?\b",
            re.IGNORECASE,
        ),
        _day_month_name,
    ),
    # "Sep 29 2025", "September 29th, 2025"
    Rule(
        "month_name_day",
        re.compile(
            rf"\b({_MONTH_RE})\.?\s+(\d{{1,2}}){_ORDINAL}\b(?:,?\s+(\d{{4}})\b)?",
            re.IGNORECASE,
        ),
        _month_name_day,
    ),
    # "29/09/2025", "29-09-2025" (day first)
    Rule(
        "day_month_year",
        re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4})\b"),
        lambda m, today: _calendar_date(int(m.group(3)), int(m.group(2)), int(m.group(1))),
    ),
    # "2025-09-29"
    Rule(
        "iso",
        re.compile(r"\b(\d{4})[/-](\d{1,2})[/-](\d{1,2})\b"),
        lambda m, today: _calendar_date(int(m.group(1)), int(m.group(2)), int(m.group(3))),
    ),
)


def extract_date(text: str, today: date | None = None) -> date | None:
    """Extract an expense date from *text*.

    Relative phrases (``yesterday``, ``today``, ``N days ago``,
    ``last week``) take priority over absolute formats.  A missing year
    means the year of *today*.

    Args:
        text: The raw utterance.
        today: Reference date for relative phrases (defaults to
            :meth:`date.today`).

    Returns:
        The extracted date, or ``None`` if nothing valid was found.
    """
    return _first_match(DATE_RULES, text, today or date.today())


def parse_date_value(value: str, today: date | None = None) -> date | None:
    """Parse a date supplied as a field value (ISO first, then any format)."""
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return extract_date(value, today)


# ── Amounts ───────────────────────────────────────────────────────────────────

CURRENCY_SYMBOLS = "$€£₹₪¥"
CURRENCY_CODES = (
    "USD", "EUR", "GBP", "INR", "ILS", "CAD", "AUD", "JPY", "CHF",
    "CNY", "SGD", "AED", "NZD", "MXN", "BRL", "ZAR", "SEK", "NOK", "DKK",
)

_SYMBOL = f"[{CURRENCY_SYMBOLS}]"
_CODE = "(?:" + "|".join(CURRENCY_CODES) + ")"
_WORD = r"(?:dollars?|bucks?|euros?|pounds?|rupees?|shekels?|yen)"
# Thousands-grouped or plain number, not followed by more digits, a date
# separator, an ordinal suffix or "days".
_NUMBER = (
    r"(\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"
    r"(?!\d|[/-]\d|(?:st|nd|rd|th)\b|\s*days?\b)"
)


def _to_decimal(m: re.Match[str], today: date) -> Decimal | None:
    try:
        return Decimal(m.group(1).replace(",", ""))
    except InvalidOperation:
        return None


AMOUNT_RULES: tuple[Rule[Decimal], ...] = (
    Rule("symbol_prefix", re.compile(rf"{_SYMBOL}\s?{_NUMBER}"), _to_decimal),
    Rule("code_prefix", re.compile(rf"\b{_CODE}\s*{_NUMBER}", re.IGNORECASE), _to_decimal),
    Rule(
        "currency_suffix",
        re.compile(rf"\b{_NUMBER}\s*(?:(?:{_WORD}|{_CODE})\b|{_SYMBOL})", re.IGNORECASE),
        _to_decimal,
    ),
    Rule(
        "after_verb",
        re.compile(
            rf"\b(?:costs?|paid|spent|was)\s*(?:{_SYMBOL}|{_CODE}\b)?\s*{_NUMBER}",
            re.IGNORECASE,
        ),
        _to_decimal,
    ),
    Rule("before_for_on", re.compile(rf"\b{_NUMBER}\s*(?:for|on)\b", re.IGNORECASE), _to_decimal),
)

_BARE_AMOUNT = re.compile(
    rf"^\s*(?:{_SYMBOL}|{_CODE}\b)?\s*{_NUMBER}\s*(?:{_WORD}|{_CODE}|{_SYMBOL})?\s*[.!]?\s*$",
    re.IGNORECASE,
)


def extract_amount(text: str) -> Decimal | None:
    """Extract a currency amount from *text*.

    Thousands separators are stripped before parsing, so ``"$1,234.50"``
    yields ``Decimal("1234.50")``.
    """
    return _first_match(AMOUNT_RULES, text, date.today())


def parse_amount_value(value: str) -> Decimal | None:
    """Parse an amount supplied on its own (``"42"``, ``"$42"``, ``"42 USD"``).

    Falls back to :func:`extract_amount` for longer phrases.
    """
    match = _BARE_AMOUNT.match(value)
    if match is not None:
        return _to_decimal(match, date.today())
    return extract_amount(value)


# ── Merchant ──────────────────────────────────────────────────────────────────

_DATE_PHRASE = r"(?:yesterday|today|last\s+week|\d+\s*days?\s+ago)"

_MERCHANT_STOP = (
    rf"(?=\s+(?:for|on|with|using|{_DATE_PHRASE})\b"
    rf"|\s*{_SYMBOL}|\s+\d|\s*[,;!?]|\.\s|\.?\s*$)"
)

MERCHANT_RULES: tuple[Rule[str], ...] = (
    # "at McDonald's for $12", "from Amazon", "to Uber"
    Rule(
        "at_from_to",
        re.compile(
            rf"\b(?:at|from|to)\s+([A-Za-z][A-Za-z0-9\s&'’.\-]*?){_MERCHANT_STOP}",
            re.IGNORECASE,
        ),
        lambda m, today: m.group(1).strip() or None,
    ),
    # "Starbucks for $5", "Uber ride cost 25"
    Rule(
        "leading_clause",
        re.compile(
            rf"^\s*([A-Za-z][A-Za-z0-9\s&'’.\-]*?)\s+(?:for\s*{_SYMBOL}|costs?\b)",
            re.IGNORECASE,
        ),
        lambda m, today: m.group(1).strip() or None,
    ),
)


def extract_merchant(text: str) -> str | None:
    """Extract the merchant name from *text*."""
    return _first_match(MERCHANT_RULES, text, date.today())


# ── Description ───────────────────────────────────────────────────────────────

DESCRIPTION_RULES: tuple[Rule[str], ...] = (
    # "bought lunch at ...", "got coffee for $5"
    Rule(
        "purchase_verb",
        re.compile(
            rf"\b(?:bought|purchased|paid\s+for|got)\s+([^{CURRENCY_SYMBOLS}]+?)"
            rf"(?=\s+(?:at|from)\b|\s+for\s*[{CURRENCY_SYMBOLS}\d])",
            re.IGNORECASE,
        ),
        lambda m, today: m.group(1).strip() or None,
    ),
    # "for office supplies last week", "for lunch at ..."
    Rule(
        "for_clause",
        re.compile(
            rf"\bfor\s+([A-Za-z][^{CURRENCY_SYMBOLS}]*?)"
            rf"(?=\s+at\b|\s+{_DATE_PHRASE}\b|\s*[,;!?]|\.?\s*$)",
            re.IGNORECASE,
        ),
        lambda m, today: m.group(1).strip() or None,
    ),
)


def extract_description(text: str) -> str | None:
    """Extract what was purchased from *text*."""
    return _first_match(DESCRIPTION_RULES, text, date.today())
