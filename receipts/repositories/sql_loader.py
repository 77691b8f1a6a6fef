from __future__ import annotations

from pathlib import Path

SQL_DIR = Path(__file__).resolve().parent / "sql"


def load_sql(name: str) -> str:
    """Read a statement shipped under receipts/repositories/sql/."""
    statement = (SQL_DIR / name).read_text(encoding="utf-8").strip()
    if not statement:
        raise ValueError(f"empty SQL file: {name}")
    return statement
