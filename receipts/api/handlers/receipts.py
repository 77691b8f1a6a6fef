from __future__ import annotations

from receipts.api.handlers.deps import ApiDeps
from receipts.api.schemas import ReceiptListResponse, ReceiptView

COMPONENT_ID = "api.receipts"


async def list_receipts_handler(*, period: int, api_deps: ApiDeps) -> ReceiptListResponse:
    records = await api_deps.repository.list_receipts(period=period)
    return ReceiptListResponse(
        period=period,
        items=[
            ReceiptView(
                period=record.period,
                member_id=record.member_id,
                branch=record.branch,
                name=record.name,
                amount_cents=record.amount_cents,
                issue_date=record.issue_date,
                artifact_key=record.artifact_key,
                status=record.status,
                error_code=record.error_code,
            )
            for record in records
        ],
    )


async def get_receipt_artifact_handler(*, member_id: str, period: int, api_deps: ApiDeps) -> bytes | None:
    """Stored PDF for a receipt that finished successfully, else None."""
    record = await api_deps.repository.get_receipt(period=period, member_id=member_id)
    if record is None or record.artifact_key is None:
        return None
    try:
        return api_deps.artifact_repository.load_receipt(member_id=member_id, period=period)
    except KeyError:
        return None
