from __future__ import annotations

from receipts.domain.dto import ParseImportCommand
from receipts.domain.error_taxonomy import classify_error
from receipts.domain.models import ProcessResult, QueueDelivery
from receipts.domain.use_cases.parse import parse_import
from receipts.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.import.parse"


async def process_message(deps: WorkerDeps, *, delivery: QueueDelivery) -> ProcessResult:
    """Decode the job's upload into rows; a rejected file fails the job, not the message."""
    result = await parse_import(
        ParseImportCommand(job_id=delivery.message.job_id),
        repository=deps.repository,
        artifacts=deps.artifact_repository,
        queue=deps.queue,
    )
    if result.error_code is not None:
        return ProcessResult(
            success=False,
            detail=f"job {result.job_id} rejected",
            error_code=result.error_code,
            retry_classification=classify_error(result.error_code),
        )
    if result.skipped_reason is not None:
        return ProcessResult(success=True, detail=f"skipped:{result.skipped_reason}")
    return ProcessResult(success=True, detail=f"parsed {result.total_rows} rows")
