from __future__ import annotations

import logging

from receipts.domain.contracts import ArtifactRepository, ImportQueue, ImportRepository
from receipts.domain.csv_decoder import decode_csv
from receipts.domain.dto import ParseImportCommand, ParseImportResult
from receipts.domain.error_taxonomy import resolve_stage_error
from receipts.domain.errors import FatalInputError
from receipts.domain.models import JobPhase, JobStatus, MessageType, QueueMessage

COMPONENT_ID = "domain.import.parse"

logger = logging.getLogger("runtime")


async def parse_import(
    cmd: ParseImportCommand,
    *,
    repository: ImportRepository,
    artifacts: ArtifactRepository,
    queue: ImportQueue,
) -> ParseImportResult:
    """Decode the stored upload into PENDING rows and start row processing.

    Safe to replay: a job that already left the parsing phase is skipped and
    rows inserted by an interrupted earlier attempt are kept as they are.
    """
    job = await repository.get_job(job_id=cmd.job_id)
    if job is None:
        return ParseImportResult(job_id=cmd.job_id, skipped_reason="job_not_found")
    if job.status != JobStatus.RUNNING or job.phase != JobPhase.PARSING:
        return ParseImportResult(job_id=cmd.job_id, total_rows=job.total_rows, skipped_reason="job_already_parsed")

    try:
        csv_text = artifacts.load_source(source_key=job.source_key)
    except KeyError:
        return await _fail(repository, job_id=job.job_id, code="source_missing")

    try:
        decoded = decode_csv(csv_text)
    except FatalInputError as exc:
        return await _fail(repository, job_id=job.job_id, code=exc.code)

    await repository.insert_rows(job_id=job.job_id, rows=[dict(row.fields) for row in decoded.rows])
    total_rows = len(decoded.rows)
    if await repository.start_processing(job_id=job.job_id, total_rows=total_rows):
        await queue.enqueue(QueueMessage(type=MessageType.PROCESS, job_id=job.job_id))
    logger.info("import job parsed", extra={"job_id": job.job_id, "total_rows": total_rows})
    return ParseImportResult(job_id=job.job_id, total_rows=total_rows)


async def _fail(repository: ImportRepository, *, job_id: str, code: str) -> ParseImportResult:
    error_code = resolve_stage_error(stage="parse", code=code)
    await repository.fail_job(job_id=job_id, error_code=error_code)
    logger.warning("import job rejected", extra={"job_id": job_id, "error_code": error_code})
    return ParseImportResult(job_id=job_id, error_code=error_code)
