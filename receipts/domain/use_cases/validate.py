from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime
from itertools import islice

from receipts.domain.csv_decoder import BUSINESS_KEY_COLUMN, iter_raw_rows
from receipts.domain.dto import ValidateImportCommand, ValidateImportResult, ValidationIssue
from receipts.domain.models import InvalidRow
from receipts.domain.normalization import normalize_period
from receipts.domain.rows import parse_row

COMPONENT_ID = "domain.import.validate"
DIRECTORY_CHECK_SKIPPED = "DIRECTORY_CHECK_SKIPPED"

# Data rows start on line 2 of the file; the header is line 1.
FIRST_DATA_LINE = 2


def _utc_today() -> date:
    return datetime.now(tz=UTC).date()


def validate_import(
    cmd: ValidateImportCommand,
    *,
    today: Callable[[], date] = _utc_today,
) -> ValidateImportResult:
    """Dry-run the row rules over the head of a file without creating a job."""
    if not cmd.csv_text.strip():
        return ValidateImportResult(ok=False, checked_rows=0, header=(), error_code="empty_csv")

    header, rows = iter_raw_rows(cmd.csv_text)
    if BUSINESS_KEY_COLUMN not in header:
        return ValidateImportResult(ok=False, checked_rows=0, header=header, error_code="missing_column")

    errors: list[ValidationIssue] = []
    checked_rows = 0
    default_period: int | None = None
    for raw in islice(rows, cmd.max_rows):
        if default_period is None:
            default_period = normalize_period(raw.get("year")) or today().year - 1
        checked_rows += 1
        parsed = parse_row(raw, default_period=default_period)
        if isinstance(parsed, InvalidRow):
            errors.append(
                ValidationIssue(
                    type=parsed.reasons[0],
                    row=raw.row_index + FIRST_DATA_LINE,
                    member_id=parsed.member_id,
                )
            )

    if checked_rows == 0:
        return ValidateImportResult(ok=False, checked_rows=0, header=header, error_code="no_rows")
    return ValidateImportResult(
        ok=not errors,
        checked_rows=checked_rows,
        header=header,
        errors=errors,
        warnings=[DIRECTORY_CHECK_SKIPPED],
    )
