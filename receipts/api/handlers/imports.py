from __future__ import annotations

from receipts.api.handlers.deps import ApiDeps
from receipts.api.schemas import (
    ImportJobResponse,
    ImportRowsResponse,
    ImportRowView,
    ResubmitImportResponse,
    SubmitImportResponse,
    ValidateImportResponse,
    ValidationIssueView,
)
from receipts.domain.csv_decoder import BUSINESS_KEY_COLUMN
from receipts.domain.dto import (
    ResubmitImportCommand,
    SubmitImportCommand,
    ValidateImportCommand,
)
from receipts.domain.models import RowStatus
from receipts.domain.use_cases.resubmit import resubmit_import
from receipts.domain.use_cases.submit import submit_import
from receipts.domain.use_cases.validate import validate_import

COMPONENT_ID = "api.imports"


async def submit_import_handler(*, csv_text: str, api_deps: ApiDeps) -> SubmitImportResponse:
    """Raises FatalInputError when the upload has no usable rows."""
    result = await submit_import(
        SubmitImportCommand(csv_text=csv_text),
        repository=api_deps.repository,
        artifacts=api_deps.artifact_repository,
        queue=api_deps.queue,
    )
    return SubmitImportResponse(
        job_id=result.job_id,
        period=result.period,
        total_rows=result.total_rows,
        status=result.status,
    )


async def get_import_job_handler(*, job_id: str, api_deps: ApiDeps) -> ImportJobResponse | None:
    job = await api_deps.repository.get_job(job_id=job_id)
    if job is None:
        return None
    return ImportJobResponse(
        job_id=job.job_id,
        period=job.period,
        status=job.status,
        phase=job.phase,
        total_rows=job.total_rows,
        processed_rows=job.processed_rows,
        ok_rows=job.ok_rows,
        failed_rows=job.failed_rows,
        resume_cursor=job.resume_cursor,
        last_error=job.last_error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


async def list_import_rows_handler(
    *,
    job_id: str,
    statuses: list[RowStatus] | None,
    limit: int,
    offset: int,
    api_deps: ApiDeps,
) -> ImportRowsResponse | None:
    job = await api_deps.repository.get_job(job_id=job_id)
    if job is None:
        return None
    rows = await api_deps.repository.list_rows(
        job_id=job_id,
        statuses=statuses or None,
        limit=limit,
        offset=offset,
    )
    return ImportRowsResponse(
        job_id=job_id,
        items=[
            ImportRowView(
                row_index=row.row_index,
                status=row.status,
                member_id=row.raw_fields.get(BUSINESS_KEY_COLUMN, ""),
                resolved_email=row.resolved_email,
                artifact_key=row.artifact_key,
                error_code=row.error_code,
                attempts=row.attempts,
            )
            for row in rows
        ],
    )


async def validate_import_handler(*, csv_text: str, max_rows: int = 1000) -> ValidateImportResponse:
    result = validate_import(ValidateImportCommand(csv_text=csv_text, max_rows=max_rows))
    return ValidateImportResponse(
        ok=result.ok,
        checked_rows=result.checked_rows,
        header=list(result.header),
        errors=[ValidationIssueView(type=issue.type, row=issue.row, member_id=issue.member_id) for issue in result.errors],
        warnings=result.warnings,
        error_code=result.error_code,
    )


async def resubmit_import_handler(*, job_id: str, api_deps: ApiDeps) -> ResubmitImportResponse | None:
    try:
        result = await resubmit_import(
            ResubmitImportCommand(job_id=job_id),
            repository=api_deps.repository,
            artifacts=api_deps.artifact_repository,
            queue=api_deps.queue,
        )
    except KeyError:
        return None
    return ResubmitImportResponse(
        ok=result.ok,
        source_job_id=result.source_job_id,
        job_id=result.job_id,
        period=result.period,
        resubmitted_rows=result.resubmitted_rows,
        error_code=result.error_code,
    )
