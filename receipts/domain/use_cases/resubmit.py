from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime

from receipts.domain.contracts import ArtifactRepository, ImportQueue, ImportRepository
from receipts.domain.csv_decoder import EXPECTED_COLUMNS
from receipts.domain.dto import ResubmitImportCommand, ResubmitImportResult, SubmitImportCommand
from receipts.domain.models import ImportRowSnapshot, JobStatus, RowStatus
from receipts.domain.use_cases.submit import submit_import
from receipts.lib.artifacts.codecs import encode_rows_csv

COMPONENT_ID = "domain.import.resubmit"
PAGE_SIZE = 500
RESUBMITTABLE_STATUSES = (RowStatus.ERROR, RowStatus.NEEDS_INPUT)


def _utc_today() -> date:
    return datetime.now(tz=UTC).date()


async def resubmit_import(
    cmd: ResubmitImportCommand,
    *,
    repository: ImportRepository,
    artifacts: ArtifactRepository,
    queue: ImportQueue,
    today: Callable[[], date] = _utc_today,
) -> ResubmitImportResult:
    """Start a new job from the failed and incomplete rows of a finished job.

    The source job and its rows are left as they are. Raises KeyError for an
    unknown job.
    """
    job = await repository.get_job(job_id=cmd.job_id)
    if job is None:
        raise KeyError(f"job not found: {cmd.job_id}")
    if job.status != JobStatus.DONE:
        return ResubmitImportResult(ok=False, source_job_id=job.job_id, error_code="job_not_finished")

    rows = await _collect_rows(repository, job_id=job.job_id)
    if not rows:
        return ResubmitImportResult(ok=False, source_job_id=job.job_id, error_code="nothing_to_resubmit")

    csv_text = encode_rows_csv(header=_header_for(rows), rows=[row.raw_fields for row in rows])
    submitted = await submit_import(
        SubmitImportCommand(csv_text=csv_text),
        repository=repository,
        artifacts=artifacts,
        queue=queue,
        today=today,
    )
    return ResubmitImportResult(
        ok=True,
        source_job_id=job.job_id,
        job_id=submitted.job_id,
        period=submitted.period,
        resubmitted_rows=len(rows),
    )


async def _collect_rows(repository: ImportRepository, *, job_id: str) -> list[ImportRowSnapshot]:
    collected: list[ImportRowSnapshot] = []
    offset = 0
    while True:
        page = await repository.list_rows(
            job_id=job_id,
            statuses=RESUBMITTABLE_STATUSES,
            limit=PAGE_SIZE,
            offset=offset,
        )
        collected.extend(page)
        if len(page) < PAGE_SIZE:
            return collected
        offset += PAGE_SIZE


def _header_for(rows: list[ImportRowSnapshot]) -> list[str]:
    header = [name for name in EXPECTED_COLUMNS if any(name in row.raw_fields for row in rows)]
    for row in rows:
        for name in row.raw_fields:
            if name not in header:
                header.append(name)
    return header
