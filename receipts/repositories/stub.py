from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

from receipts.domain.errors import DomainInvariantError
from receipts.domain.ids import new_message_public_id
from receipts.domain.lifecycle import ensure_job_transition, ensure_row_transition
from receipts.domain.models import (
    ImportJobSnapshot,
    ImportRowSnapshot,
    JobPhase,
    JobStatus,
    QueueDelivery,
    QueueMessage,
    ReceiptRecord,
    ReceiptStatus,
    RowStatus,
)


@dataclass
class _JobRow:
    job_id: str
    period: int
    source_key: str
    status: JobStatus = JobStatus.RUNNING
    phase: JobPhase = JobPhase.PARSING
    total_rows: int = 0
    processed_rows: int = 0
    ok_rows: int = 0
    failed_rows: int = 0
    resume_cursor: int = 0
    last_error: str | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class _ImportRow:
    job_id: str
    row_index: int
    raw_fields: dict[str, str]
    status: RowStatus = RowStatus.PENDING
    resolved_email: str | None = None
    artifact_key: str | None = None
    error_code: str | None = None
    attempts: int = 0
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class InMemoryImportRepository:
    """Non-network repository with deterministic behavior for skeleton mode."""

    jobs: dict[str, _JobRow] = field(default_factory=dict)
    rows: dict[tuple[str, int], _ImportRow] = field(default_factory=dict)
    receipts: dict[tuple[int, str], ReceiptRecord] = field(default_factory=dict)
    receipt_writes: list[tuple[int, str, ReceiptStatus]] = field(default_factory=list)
    row_transitions: list[tuple[str, int, str]] = field(default_factory=list)

    async def create_job(self, *, job_id: str, period: int, source_key: str) -> ImportJobSnapshot:
        if job_id in self.jobs:
            raise DomainInvariantError(f"job already exists: {job_id}")
        row = _JobRow(job_id=job_id, period=period, source_key=source_key)
        self.jobs[job_id] = row
        return _job_snapshot(row)

    async def get_job(self, *, job_id: str) -> ImportJobSnapshot | None:
        row = self.jobs.get(job_id)
        if row is None:
            return None
        return _job_snapshot(row)

    async def fail_job(self, *, job_id: str, error_code: str) -> None:
        row = self._job(job_id)
        ensure_job_transition(row.status, JobStatus.ERROR)
        row.status = JobStatus.ERROR
        row.last_error = error_code
        row.lease_owner = None
        row.lease_expires_at = None
        row.updated_at = datetime.now(tz=UTC)

    async def insert_rows(self, *, job_id: str, rows: Sequence[Mapping[str, str]]) -> int:
        self._job(job_id)
        inserted = 0
        for row_index, raw_fields in enumerate(rows):
            key = (job_id, row_index)
            if key in self.rows:
                continue
            self.rows[key] = _ImportRow(job_id=job_id, row_index=row_index, raw_fields=dict(raw_fields))
            inserted += 1
        return inserted

    async def start_processing(self, *, job_id: str, total_rows: int) -> bool:
        row = self._job(job_id)
        if row.status != JobStatus.RUNNING or row.phase != JobPhase.PARSING:
            return False
        row.phase = JobPhase.PROCESSING
        row.total_rows = total_rows
        row.resume_cursor = 0
        row.processed_rows = 0
        row.ok_rows = 0
        row.failed_rows = 0
        row.updated_at = datetime.now(tz=UTC)
        return True

    async def acquire_job_lease(self, *, job_id: str, owner: str, lease_seconds: int) -> bool:
        row = self.jobs.get(job_id)
        if row is None or row.status != JobStatus.RUNNING:
            return False
        now = datetime.now(tz=UTC)
        if row.lease_owner is not None and row.lease_expires_at is not None and row.lease_expires_at > now:
            return False
        row.lease_owner = owner
        row.lease_expires_at = now + timedelta(seconds=lease_seconds)
        return True

    async def release_job_lease(self, *, job_id: str, owner: str) -> None:
        row = self.jobs.get(job_id)
        if row is None or row.lease_owner != owner:
            return
        row.lease_owner = None
        row.lease_expires_at = None

    async def reclaim_expired_job_leases(self) -> list[str]:
        now = datetime.now(tz=UTC)
        reclaimed: list[str] = []
        for row in self.jobs.values():
            if (
                row.status == JobStatus.RUNNING
                and row.lease_owner is not None
                and row.lease_expires_at is not None
                and row.lease_expires_at <= now
            ):
                row.lease_owner = None
                row.lease_expires_at = None
                reclaimed.append(row.job_id)
        return reclaimed

    async def claim_pending_rows(self, *, job_id: str, from_index: int, limit: int) -> list[ImportRowSnapshot]:
        pending = sorted(
            (
                row
                for (row_job_id, row_index), row in self.rows.items()
                if row_job_id == job_id and row_index >= from_index and row.status == RowStatus.PENDING
            ),
            key=lambda row: row.row_index,
        )
        return [_row_snapshot(row) for row in pending[:limit]]

    async def min_pending_index(self, *, job_id: str) -> int | None:
        indexes = [
            row_index
            for (row_job_id, row_index), row in self.rows.items()
            if row_job_id == job_id and row.status == RowStatus.PENDING
        ]
        return min(indexes) if indexes else None

    async def count_pending_rows(self, *, job_id: str) -> int:
        return sum(
            1
            for (row_job_id, _row_index), row in self.rows.items()
            if row_job_id == job_id and row.status == RowStatus.PENDING
        )

    async def mark_row(
        self,
        *,
        job_id: str,
        row_index: int,
        status: RowStatus,
        error_code: str | None = None,
        resolved_email: str | None = None,
        artifact_key: str | None = None,
    ) -> bool:
        row = self.rows.get((job_id, row_index))
        if row is None or row.status != RowStatus.PENDING:
            return False
        ensure_row_transition(row.status, status)
        job = self._job(job_id)
        row.status = status
        row.error_code = error_code
        row.resolved_email = resolved_email
        row.artifact_key = artifact_key
        row.updated_at = datetime.now(tz=UTC)
        if status == RowStatus.DONE:
            job.ok_rows += 1
        else:
            job.failed_rows += 1
        _advance_cursor(job, row_index)
        self.row_transitions.append((job_id, row_index, status.value))
        return True

    async def defer_row(self, *, job_id: str, row_index: int, error_code: str) -> int | None:
        row = self.rows.get((job_id, row_index))
        if row is None or row.status != RowStatus.PENDING:
            return None
        row.attempts += 1
        row.error_code = error_code
        row.updated_at = datetime.now(tz=UTC)
        _advance_cursor(self._job(job_id), row_index)
        return row.attempts

    async def complete_job(self, *, job_id: str) -> ImportJobSnapshot:
        row = self._job(job_id)
        if row.status != JobStatus.DONE:
            ensure_job_transition(row.status, JobStatus.DONE)
        row.status = JobStatus.DONE
        row.resume_cursor = row.total_rows
        row.processed_rows = row.total_rows
        row.updated_at = datetime.now(tz=UTC)
        return _job_snapshot(row)

    async def list_rows(
        self,
        *,
        job_id: str,
        statuses: Sequence[RowStatus] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[ImportRowSnapshot]:
        wanted = set(statuses) if statuses is not None else None
        items = sorted(
            (
                row
                for (row_job_id, _row_index), row in self.rows.items()
                if row_job_id == job_id and (wanted is None or row.status in wanted)
            ),
            key=lambda row: row.row_index,
        )
        return [_row_snapshot(row) for row in items[offset : offset + limit]]

    async def upsert_receipt(
        self,
        *,
        period: int,
        member_id: str,
        branch: str,
        name: str,
        amount_cents: int,
        issue_date: date | None,
        artifact_key: str | None,
        status: ReceiptStatus,
        error_code: str | None = None,
    ) -> None:
        self.receipts[(period, member_id)] = ReceiptRecord(
            period=period,
            member_id=member_id,
            branch=branch,
            name=name,
            amount_cents=amount_cents,
            issue_date=issue_date,
            artifact_key=artifact_key,
            status=status,
            error_code=error_code,
            updated_at=datetime.now(tz=UTC),
        )
        self.receipt_writes.append((period, member_id, status))

    async def get_receipt(self, *, period: int, member_id: str) -> ReceiptRecord | None:
        return self.receipts.get((period, member_id))

    async def list_receipts(self, *, period: int) -> list[ReceiptRecord]:
        items = [record for (record_period, _member_id), record in self.receipts.items() if record_period == period]
        items.sort(key=lambda record: (record.branch, record.name, record.member_id))
        return items

    def _job(self, job_id: str) -> _JobRow:
        row = self.jobs.get(job_id)
        if row is None:
            raise KeyError(f"job not found: {job_id}")
        return row


@dataclass
class _QueuedMessage:
    delivery_id: str
    message: QueueMessage
    available_at: datetime
    attempts: int = 0
    claimed_by: str | None = None
    lease_expires_at: datetime | None = None
    last_error: str | None = None


@dataclass
class InMemoryImportQueue:
    """At-least-once queue mirroring the Postgres queue's lease and dead-letter rules."""

    max_deliveries: int = 5
    messages: dict[str, _QueuedMessage] = field(default_factory=dict)
    dead_letters: list[_QueuedMessage] = field(default_factory=list)
    acked: list[QueueMessage] = field(default_factory=list)

    async def enqueue(self, message: QueueMessage, *, delay_ms: int = 0) -> str:
        delivery_id = new_message_public_id()
        self.messages[delivery_id] = _QueuedMessage(
            delivery_id=delivery_id,
            message=message,
            available_at=datetime.now(tz=UTC) + timedelta(milliseconds=delay_ms),
        )
        return delivery_id

    async def receive(self, *, consumer_id: str, lease_seconds: int = 30) -> QueueDelivery | None:
        now = datetime.now(tz=UTC)
        for item in self.messages.values():
            if item.claimed_by is not None or item.available_at > now:
                continue
            item.claimed_by = consumer_id
            item.attempts += 1
            item.lease_expires_at = now + timedelta(seconds=lease_seconds)
            return QueueDelivery(
                delivery_id=item.delivery_id,
                message=item.message,
                attempt=item.attempts,
                lease_expires_at=item.lease_expires_at,
            )
        return None

    async def extend_lease(self, *, delivery_id: str, consumer_id: str, lease_seconds: int = 30) -> bool:
        item = self.messages.get(delivery_id)
        now = datetime.now(tz=UTC)
        if (
            item is None
            or item.claimed_by != consumer_id
            or item.lease_expires_at is None
            or item.lease_expires_at <= now
        ):
            return False
        item.lease_expires_at = now + timedelta(seconds=lease_seconds)
        return True

    async def ack(self, *, delivery_id: str) -> None:
        item = self.messages.pop(delivery_id, None)
        if item is not None:
            self.acked.append(item.message)

    async def retry(self, *, delivery_id: str, delay_ms: int, error: str) -> None:
        item = self.messages.get(delivery_id)
        if item is None:
            return
        item.last_error = error
        self._release(item, delay_ms=delay_ms)

    async def reclaim_expired_deliveries(self) -> int:
        now = datetime.now(tz=UTC)
        reclaimed = 0
        for item in list(self.messages.values()):
            if item.claimed_by is not None and item.lease_expires_at is not None and item.lease_expires_at <= now:
                item.last_error = "lease_expired"
                self._release(item, delay_ms=0)
                reclaimed += 1
        return reclaimed

    def pending_messages(self) -> list[QueueMessage]:
        return [item.message for item in self.messages.values()]

    def _release(self, item: _QueuedMessage, *, delay_ms: int) -> None:
        item.claimed_by = None
        item.lease_expires_at = None
        if item.attempts >= self.max_deliveries:
            self.messages.pop(item.delivery_id, None)
            self.dead_letters.append(item)
            return
        item.available_at = datetime.now(tz=UTC) + timedelta(milliseconds=delay_ms)


def _advance_cursor(job: _JobRow, row_index: int) -> None:
    job.resume_cursor = max(job.resume_cursor, min(job.total_rows, row_index + 1))
    job.processed_rows = job.resume_cursor
    job.updated_at = datetime.now(tz=UTC)


def _job_snapshot(row: _JobRow) -> ImportJobSnapshot:
    return ImportJobSnapshot(
        job_id=row.job_id,
        period=row.period,
        total_rows=row.total_rows,
        processed_rows=row.processed_rows,
        ok_rows=row.ok_rows,
        failed_rows=row.failed_rows,
        resume_cursor=row.resume_cursor,
        status=row.status,
        phase=row.phase,
        source_key=row.source_key,
        last_error=row.last_error,
        lease_owner=row.lease_owner,
        lease_expires_at=row.lease_expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_snapshot(row: _ImportRow) -> ImportRowSnapshot:
    return ImportRowSnapshot(
        job_id=row.job_id,
        row_index=row.row_index,
        raw_fields=dict(row.raw_fields),
        status=row.status,
        resolved_email=row.resolved_email,
        artifact_key=row.artifact_key,
        error_code=row.error_code,
        attempts=row.attempts,
        updated_at=row.updated_at,
    )
