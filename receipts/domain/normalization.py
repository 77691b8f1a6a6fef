from __future__ import annotations

import re
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MIN_PERIOD = 2000
MAX_PERIOD = 2100
UNKNOWN_NAME = "(unknown)"

_MONEY_NOISE_RE = re.compile(r"[\s$¥,]")
_MONEY_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_YEAR_RE = re.compile(r"^\d{4}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_TAG_SPLIT_RE = re.compile(r"[;,\s]+")
_CENT = Decimal("0.01")


def parse_money_to_cents(value: str | None) -> int | None:
    """Parse a human-entered amount into integer cents.

    Currency symbols, whitespace and thousands separators are ignored and a
    parenthesized amount is negative: "$1,234.56" -> 123456, "(1234.56)" -> -123456.
    Returns None when the text is not a number.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = _MONEY_NOISE_RE.sub("", text)
    if not _MONEY_NUMBER_RE.match(text):
        return None

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None

    cents = int((amount / _CENT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return -cents if negative else cents


def format_cents(amount_cents: int) -> str:
    return f"{Decimal(amount_cents) * _CENT:.2f}"


def normalize_period(value: str | None) -> int | None:
    if value is None:
        return None
    text = value.strip()
    if not _YEAR_RE.match(text):
        return None
    year = int(text)
    if year < MIN_PERIOD or year > MAX_PERIOD:
        return None
    return year


def normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    text = value.strip().lower()
    if not _EMAIL_RE.match(text):
        return None
    return text


def format_display_name(first_name: str | None, last_name: str | None, email: str | None) -> str:
    name = f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()
    if name:
        return name
    if email:
        return email
    return UNKNOWN_NAME


def parse_tags(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    seen: list[str] = []
    for part in _TAG_SPLIT_RE.split(value.strip()):
        if part and part not in seen:
            seen.append(part)
    return tuple(seen)


def merge_period_tag(tags: Iterable[str], period: int) -> tuple[str, ...]:
    return tuple(sorted({*tags, str(period)}))
