from __future__ import annotations

import csv
import io
from collections.abc import Mapping, Sequence

import yaml

from receipts.lib.artifacts.types import TemplateLayout


def encode_source(csv_text: str) -> bytes:
    return csv_text.encode("utf-8")


def decode_source(payload: bytes) -> str:
    return payload.decode("utf-8-sig")


def encode_rows_csv(*, header: Sequence[str], rows: Sequence[Mapping[str, str]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(header), extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({name: row.get(name, "") for name in header})
    return buffer.getvalue()


def decode_layout(payload: str | bytes) -> TemplateLayout:
    data = yaml.safe_load(payload) or {}
    if not isinstance(data, dict):
        raise ValueError("template layout must be a mapping")
    return TemplateLayout.model_validate(data)
