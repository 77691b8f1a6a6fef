from __future__ import annotations

from receipts.domain.models import InvalidRow, ParsedRow, RawRow, ValidRow
from receipts.domain.normalization import normalize_period, parse_money_to_cents

MISSING_MEMBER_ID = "MISSING_MEMBER_ID"
MISSING_BRANCH = "MISSING_BRANCH"
INVALID_AMOUNT = "INVALID_AMOUNT"
INVALID_YEAR = "INVALID_YEAR"


def parse_row(raw: RawRow, *, default_period: int) -> ParsedRow:
    """Validate a decoded row. A blank year falls back to the job period."""
    member_id = raw.get("member_id")
    branch = raw.get("branch")
    amount_cents = parse_money_to_cents(raw.get("amount"))
    year_text = raw.get("year")
    period = normalize_period(year_text) if year_text else default_period

    reasons: list[str] = []
    if not member_id:
        reasons.append(MISSING_MEMBER_ID)
    if not branch:
        reasons.append(MISSING_BRANCH)
    if amount_cents is None:
        reasons.append(INVALID_AMOUNT)
    if period is None:
        reasons.append(INVALID_YEAR)

    # The None checks repeat two reasons so the types narrow for ValidRow.
    if reasons or amount_cents is None or period is None:
        return InvalidRow(row_index=raw.row_index, member_id=member_id, reasons=tuple(reasons))
    return ValidRow(
        row_index=raw.row_index,
        member_id=member_id,
        branch=branch,
        amount_cents=amount_cents,
        period=period,
    )
