from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime

from receipts.domain.contracts import ArtifactRepository, ImportQueue, ImportRepository
from receipts.domain.csv_decoder import ensure_business_key_column, iter_raw_rows
from receipts.domain.dto import SubmitImportCommand, SubmitImportResult
from receipts.domain.errors import FatalInputError
from receipts.domain.ids import new_job_public_id
from receipts.domain.models import MessageType, QueueMessage
from receipts.domain.normalization import normalize_period

COMPONENT_ID = "domain.import.submit"

logger = logging.getLogger("runtime")


def _utc_today() -> date:
    return datetime.now(tz=UTC).date()


def resolve_job_period(csv_text: str, *, today: Callable[[], date] = _utc_today) -> int:
    """Period of a job: the first data row's year, else the previous calendar year.

    Raises FatalInputError when the file cannot produce any row.
    """
    if not csv_text.strip():
        raise FatalInputError("empty_csv", "uploaded file is empty")
    header, rows = iter_raw_rows(csv_text)
    ensure_business_key_column(header)
    first = next(rows, None)
    if first is None:
        raise FatalInputError("no_rows", "CSV must contain a header and at least one data row")
    return normalize_period(first.get("year")) or today().year - 1


async def submit_import(
    cmd: SubmitImportCommand,
    *,
    repository: ImportRepository,
    artifacts: ArtifactRepository,
    queue: ImportQueue,
    today: Callable[[], date] = _utc_today,
) -> SubmitImportResult:
    """Store the upload, create the job and hand decoding to the parse stage."""
    period = resolve_job_period(cmd.csv_text, today=today)
    job_id = new_job_public_id()
    source_key = artifacts.save_source(job_id=job_id, csv_text=cmd.csv_text)
    job = await repository.create_job(job_id=job_id, period=period, source_key=source_key)
    await queue.enqueue(QueueMessage(type=MessageType.PARSE, job_id=job_id))
    logger.info("import job submitted", extra={"job_id": job_id, "period": period})
    return SubmitImportResult(job_id=job.job_id, period=job.period, total_rows=job.total_rows, status=job.status)
