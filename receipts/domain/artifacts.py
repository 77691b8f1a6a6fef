from __future__ import annotations

from urllib.parse import quote

UPLOADS_PREFIX = "uploads/"
TEMPLATES_PREFIX = "templates/"
RECEIPTS_PREFIX = "receipts/"

TEMPLATE_KEY = "templates/receipt_template_v1.pdf"
FONT_KEY = "templates/fonts/receipt-font.otf"


def upload_key(*, job_id: str) -> str:
    return f"{UPLOADS_PREFIX}{job_id}.csv"


def receipt_artifact_key(*, member_id: str, period: int) -> str:
    # Member ids come from user CSVs; keep them to a single path segment.
    return f"{RECEIPTS_PREFIX}{quote(member_id, safe='')}/{period}.pdf"
