from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from receipts.domain.budget import Budget
from receipts.domain.contracts import (
    ArtifactRepository,
    DirectoryClient,
    ImportQueue,
    ImportRepository,
    ReceiptRenderer,
)
from receipts.domain.errors import BudgetExhaustedError, LookupTransientError, WriteBackError
from receipts.domain.lifecycle import TERMINAL_JOB_STATUSES
from receipts.domain.lookups import InvocationLookups
from receipts.domain.models import (
    BatchOutcome,
    ImportJobSnapshot,
    ImportRowSnapshot,
    InvalidRow,
    JobPhase,
    MessageType,
    QueueMessage,
    RawRow,
    ReceiptFields,
    ReceiptStatus,
    RowOutcome,
    RowStatus,
    RowTally,
    StopReason,
    ValidRow,
)
from receipts.domain.normalization import format_cents, merge_period_tag
from receipts.domain.rows import parse_row
from receipts.settings import ImportSettings

COMPONENT_ID = "domain.import.process_batch"
NOT_FOUND_NAME = "(not found)"

logger = logging.getLogger("runtime")


def _utc_today() -> date:
    return datetime.now(tz=UTC).date()


@dataclass
class BatchScheduler:
    """Drains one slice of a job's PENDING rows per invocation.

    An invocation loads the job, takes the job lease, claims up to batch_size
    rows from the resume cursor (or from the lowest PENDING row when the cursor
    has passed everything still pending), processes them in index order under
    the time and call budget, and then either finishes the job or, once the
    lease is released, enqueues the next process message.
    """

    repository: ImportRepository
    directory: DirectoryClient
    artifacts: ArtifactRepository
    renderer: ReceiptRenderer
    queue: ImportQueue
    settings: ImportSettings = field(default_factory=ImportSettings)
    clock: Callable[[], float] = time.monotonic
    today: Callable[[], date] = _utc_today

    async def run(self, *, job_id: str, worker_id: str) -> BatchOutcome:
        job = await self.repository.get_job(job_id=job_id)
        if job is None:
            return BatchOutcome(job_id=job_id, skipped_reason="job_not_found")
        if job.status in TERMINAL_JOB_STATUSES:
            return BatchOutcome(job_id=job_id, skipped_reason="job_finished", resume_cursor=job.resume_cursor)
        if job.phase != JobPhase.PROCESSING:
            return BatchOutcome(job_id=job_id, skipped_reason="job_not_parsed")

        acquired = await self.repository.acquire_job_lease(
            job_id=job_id,
            owner=worker_id,
            lease_seconds=self.settings.job_lease_seconds,
        )
        if not acquired:
            return BatchOutcome(job_id=job_id, skipped_reason="job_leased")

        try:
            outcome = await self._drain(job)
        finally:
            await self.repository.release_job_lease(job_id=job_id, owner=worker_id)

        # Enqueued only once the lease is free, so the consumer of this message
        # can always take it.
        if outcome.requeued:
            await self.queue.enqueue(QueueMessage(type=MessageType.PROCESS, job_id=job_id))
        return outcome

    async def _drain(self, job: ImportJobSnapshot) -> BatchOutcome:
        rows = await self.repository.claim_pending_rows(
            job_id=job.job_id,
            from_index=job.resume_cursor,
            limit=self.settings.batch_size,
        )
        if not rows:
            first_pending = await self.repository.min_pending_index(job_id=job.job_id)
            if first_pending is not None:
                rows = await self.repository.claim_pending_rows(
                    job_id=job.job_id,
                    from_index=first_pending,
                    limit=self.settings.batch_size,
                )

        budget = Budget.start(
            call_limit=self.settings.call_budget,
            time_limit_ms=self.settings.time_budget_ms,
            clock=self.clock,
        )
        lookups = InvocationLookups(
            directory=self.directory,
            budget=budget,
            retries=self.settings.lookup_retries,
            retry_wait_ms=self.settings.retry_wait_ms,
        )
        tally = RowTally()
        stop_reason = StopReason.BATCH_COMPLETE
        for row in rows:
            if budget.time_exceeded():
                stop_reason = StopReason.TIME_BUDGET
                break
            try:
                outcome = await self._process_row(job, row, lookups, budget)
            except BudgetExhaustedError:
                stop_reason = StopReason.CALL_BUDGET
                break
            tally.record(outcome)

        pending = await self.repository.count_pending_rows(job_id=job.job_id)
        if pending == 0:
            finished = await self.repository.complete_job(job_id=job.job_id)
            logger.info(
                "import job finished",
                extra={"job_id": job.job_id, "ok_rows": finished.ok_rows, "failed_rows": finished.failed_rows},
            )
            return self._outcome(finished, tally, stop_reason, finished=True)

        current = await self.repository.get_job(job_id=job.job_id) or job
        return self._outcome(current, tally, stop_reason, requeued=True)

    async def _process_row(
        self,
        job: ImportJobSnapshot,
        row: ImportRowSnapshot,
        lookups: InvocationLookups,
        budget: Budget,
    ) -> RowOutcome:
        parsed = parse_row(RawRow(row_index=row.row_index, fields=row.raw_fields), default_period=job.period)
        if isinstance(parsed, InvalidRow):
            logger.warning(
                "import row is invalid",
                extra={"job_id": job.job_id, "row_index": row.row_index, "error_code": "invalid_row"},
            )
            return await self._finish_row(job, row, RowStatus.ERROR, error_code="invalid_row")

        try:
            contact = await lookups.resolve(parsed.member_id)
        except LookupTransientError:
            return await self._defer_row(job, row, parsed)

        if contact is None:
            await self._upsert_receipt(
                parsed,
                name=NOT_FOUND_NAME,
                status=ReceiptStatus.ERROR,
                error_code="lookup_not_found",
            )
            logger.warning(
                "member not found in directory",
                extra={"job_id": job.job_id, "row_index": row.row_index, "error_code": "lookup_not_found"},
            )
            return await self._finish_row(job, row, RowStatus.ERROR, error_code="lookup_not_found")

        if not contact.email:
            await self._upsert_receipt(
                parsed,
                name=contact.display_name,
                status=ReceiptStatus.NEEDS_INPUT,
                error_code="missing_email",
            )
            return await self._finish_row(job, row, RowStatus.NEEDS_INPUT, error_code="missing_email")

        await self._write_back(job, row, parsed, tags=contact.tags, budget=budget)

        issue_date = self.today()
        payload = self.renderer.render(
            ReceiptFields(
                name=contact.display_name,
                period=parsed.period,
                amount=format_cents(parsed.amount_cents),
                issue_date=issue_date.isoformat(),
            )
        )
        artifact_key = self.artifacts.save_receipt(member_id=parsed.member_id, period=parsed.period, payload=payload)
        await self._upsert_receipt(
            parsed,
            name=contact.display_name,
            status=ReceiptStatus.DONE,
            issue_date=issue_date,
            artifact_key=artifact_key,
        )
        return await self._finish_row(
            job,
            row,
            RowStatus.DONE,
            resolved_email=contact.email,
            artifact_key=artifact_key,
        )

    async def _defer_row(self, job: ImportJobSnapshot, row: ImportRowSnapshot, parsed: ValidRow) -> RowOutcome:
        attempts = await self.repository.defer_row(
            job_id=job.job_id,
            row_index=row.row_index,
            error_code="lookup_unavailable",
        )
        if attempts is None:
            return RowOutcome.UNCHANGED
        if attempts < self.settings.max_row_attempts:
            logger.warning(
                "directory unavailable, row deferred",
                extra={
                    "job_id": job.job_id,
                    "row_index": row.row_index,
                    "error_code": "lookup_unavailable",
                    "attempts": attempts,
                },
            )
            return RowOutcome.DEFERRED

        await self._upsert_receipt(
            parsed,
            name=NOT_FOUND_NAME,
            status=ReceiptStatus.ERROR,
            error_code="lookup_unavailable",
        )
        return await self._finish_row(job, row, RowStatus.ERROR, error_code="lookup_unavailable")

    async def _write_back(
        self,
        job: ImportJobSnapshot,
        row: ImportRowSnapshot,
        parsed: ValidRow,
        *,
        tags: tuple[str, ...],
        budget: Budget,
    ) -> None:
        if not budget.try_spend_call():
            logger.info(
                "write-back skipped, call budget spent",
                extra={"job_id": job.job_id, "row_index": row.row_index},
            )
            return
        try:
            await self.directory.write_back_tags(
                member_id=parsed.member_id,
                tags=merge_period_tag(tags, parsed.period),
            )
        except WriteBackError as exc:
            logger.warning(
                "directory write-back failed",
                extra={
                    "job_id": job.job_id,
                    "row_index": row.row_index,
                    "error_code": "write_back_failed",
                    "detail": str(exc),
                },
            )

    async def _upsert_receipt(
        self,
        parsed: ValidRow,
        *,
        name: str,
        status: ReceiptStatus,
        error_code: str | None = None,
        issue_date: date | None = None,
        artifact_key: str | None = None,
    ) -> None:
        await self.repository.upsert_receipt(
            period=parsed.period,
            member_id=parsed.member_id,
            branch=parsed.branch,
            name=name,
            amount_cents=parsed.amount_cents,
            issue_date=issue_date,
            artifact_key=artifact_key,
            status=status,
            error_code=error_code,
        )

    async def _finish_row(
        self,
        job: ImportJobSnapshot,
        row: ImportRowSnapshot,
        status: RowStatus,
        *,
        error_code: str | None = None,
        resolved_email: str | None = None,
        artifact_key: str | None = None,
    ) -> RowOutcome:
        changed = await self.repository.mark_row(
            job_id=job.job_id,
            row_index=row.row_index,
            status=status,
            error_code=error_code,
            resolved_email=resolved_email,
            artifact_key=artifact_key,
        )
        if not changed:
            return RowOutcome.UNCHANGED
        return RowOutcome.OK if status == RowStatus.DONE else RowOutcome.FAILED

    def _outcome(
        self,
        job: ImportJobSnapshot,
        tally: RowTally,
        stop_reason: StopReason,
        *,
        finished: bool = False,
        requeued: bool = False,
    ) -> BatchOutcome:
        return BatchOutcome(
            job_id=job.job_id,
            processed=tally.processed,
            ok=tally.ok,
            failed=tally.failed,
            deferred=tally.deferred,
            resume_cursor=job.resume_cursor,
            stop_reason=stop_reason,
            requeued=requeued,
            finished=finished,
        )
