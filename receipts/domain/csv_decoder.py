from __future__ import annotations

import csv
import io
from collections.abc import Iterator
from dataclasses import dataclass

from receipts.domain.errors import FatalInputError
from receipts.domain.models import RawRow

BUSINESS_KEY_COLUMN = "member_id"
EXPECTED_COLUMNS = ("member_id", "branch", "amount", "year")


@dataclass(frozen=True)
class DecodedCsv:
    header: tuple[str, ...]
    rows: list[RawRow]


def normalize_line_endings(text: str) -> str:
    return text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")


def iter_raw_rows(text: str) -> tuple[tuple[str, ...], Iterator[RawRow]]:
    """Split CSV text into a normalized header and a lazy stream of data rows.

    Quoted cells keep embedded commas and newlines, and a doubled quote inside
    quotes is a literal quote. Blank records are skipped and do not consume a
    row index.
    """
    reader = csv.reader(io.StringIO(normalize_line_endings(text)))
    header: tuple[str, ...] = ()
    for record in reader:
        if _is_blank(record):
            continue
        header = tuple(cell.strip().lower() for cell in record)
        break

    def _rows() -> Iterator[RawRow]:
        row_index = 0
        for record in reader:
            if _is_blank(record):
                continue
            cells = [cell.strip() for cell in record]
            fields = {name: (cells[position] if position < len(cells) else "") for position, name in enumerate(header)}
            yield RawRow(row_index=row_index, fields=fields)
            row_index += 1

    return header, _rows()


def decode_csv(text: str) -> DecodedCsv:
    if not text.strip():
        raise FatalInputError("empty_csv", "uploaded file is empty")

    header, rows = iter_raw_rows(text)
    ensure_business_key_column(header)
    decoded = list(rows)
    if not decoded:
        raise FatalInputError("no_rows", "CSV must contain a header and at least one data row")
    return DecodedCsv(header=header, rows=decoded)


def ensure_business_key_column(header: tuple[str, ...]) -> None:
    if BUSINESS_KEY_COLUMN not in header:
        raise FatalInputError("missing_column", f"CSV header is missing required column: {BUSINESS_KEY_COLUMN}")


def _is_blank(record: list[str]) -> bool:
    return all(not cell.strip() for cell in record)
