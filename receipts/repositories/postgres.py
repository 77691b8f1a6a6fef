from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any

import asyncpg

from receipts.domain.errors import DomainInvariantError
from receipts.domain.ids import new_message_public_id
from receipts.domain.models import (
    ImportJobSnapshot,
    ImportRowSnapshot,
    JobPhase,
    JobStatus,
    MessageType,
    QueueDelivery,
    QueueMessage,
    ReceiptRecord,
    ReceiptStatus,
    RowStatus,
)
from receipts.repositories.sql_loader import load_sql

SQL_CREATE_JOB = load_sql("create_job.sql")
SQL_GET_JOB = load_sql("get_job.sql")
SQL_FAIL_JOB = load_sql("fail_job.sql")
SQL_INSERT_ROWS = load_sql("insert_rows.sql")
SQL_START_PROCESSING = load_sql("start_processing.sql")
SQL_ACQUIRE_JOB_LEASE = load_sql("acquire_job_lease.sql")
SQL_RELEASE_JOB_LEASE = load_sql("release_job_lease.sql")
SQL_RECLAIM_JOB_LEASES = load_sql("reclaim_job_leases.sql")
SQL_CLAIM_PENDING_ROWS = load_sql("claim_pending_rows.sql")
SQL_MIN_PENDING_INDEX = load_sql("min_pending_index.sql")
SQL_COUNT_PENDING_ROWS = load_sql("count_pending_rows.sql")
SQL_MARK_ROW = load_sql("mark_row.sql")
SQL_DEFER_ROW = load_sql("defer_row.sql")
SQL_COMPLETE_JOB = load_sql("complete_job.sql")
SQL_LIST_ROWS = load_sql("list_rows.sql")
SQL_UPSERT_RECEIPT = load_sql("upsert_receipt.sql")
SQL_GET_RECEIPT = load_sql("get_receipt.sql")
SQL_LIST_RECEIPTS = load_sql("list_receipts.sql")
SQL_ENQUEUE_MESSAGE = load_sql("enqueue_message.sql")
SQL_RECEIVE_MESSAGE = load_sql("receive_message.sql")
SQL_EXTEND_MESSAGE_LEASE = load_sql("extend_message_lease.sql")
SQL_ACK_MESSAGE = load_sql("ack_message.sql")
SQL_RETRY_MESSAGE = load_sql("retry_message.sql")
SQL_RECLAIM_MESSAGES = load_sql("reclaim_messages.sql")

# Rows per INSERT when materializing a decoded upload.
INSERT_CHUNK_SIZE = 200


def _is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "sqlstate", None) == "23505"


@dataclass
class AsyncpgPoolManager:
    dsn: str
    pool: Any | None = None

    async def startup(self) -> None:
        async def _init_connection(conn: Any) -> None:
            await conn.set_type_codec(
                "json",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )
            await conn.set_type_codec(
                "jsonb",
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

        self.pool = await asyncpg.create_pool(
            dsn=self.dsn,
            min_size=1,
            max_size=5,
            init=_init_connection,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class _PoolBound:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool


@dataclass
class PostgresImportRepository(_PoolBound):
    async def create_job(self, *, job_id: str, period: int, source_key: str) -> ImportJobSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            try:
                row = await conn.fetchrow(SQL_CREATE_JOB, job_id, period, source_key)
            except Exception as exc:
                if _is_unique_violation(exc):
                    raise DomainInvariantError(f"job already exists: {job_id}") from exc
                raise
        if row is None:
            raise DomainInvariantError("failed to create import job")
        return _job_snapshot(row)

    async def get_job(self, *, job_id: str) -> ImportJobSnapshot | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_JOB, job_id)
        if row is None:
            return None
        return _job_snapshot(row)

    async def fail_job(self, *, job_id: str, error_code: str) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(SQL_FAIL_JOB, job_id, error_code)
        if updated is None:
            raise DomainInvariantError(f"job cannot be failed: {job_id}")

    async def insert_rows(self, *, job_id: str, rows: Sequence[Mapping[str, str]]) -> int:
        pool = self._pool()
        inserted = 0
        async with pool.acquire() as conn:
            async with conn.transaction():
                for start in range(0, len(rows), INSERT_CHUNK_SIZE):
                    chunk = [dict(fields) for fields in rows[start : start + INSERT_CHUNK_SIZE]]
                    created = await conn.fetch(SQL_INSERT_ROWS, job_id, start, chunk)
                    inserted += len(created)
        return inserted

    async def start_processing(self, *, job_id: str, total_rows: int) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(SQL_START_PROCESSING, job_id, total_rows)
        return updated is not None

    async def acquire_job_lease(self, *, job_id: str, owner: str, lease_seconds: int) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(SQL_ACQUIRE_JOB_LEASE, job_id, owner, float(lease_seconds))
        return updated is not None

    async def release_job_lease(self, *, job_id: str, owner: str) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_RELEASE_JOB_LEASE, job_id, owner)

    async def reclaim_expired_job_leases(self) -> list[str]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_RECLAIM_JOB_LEASES)
        return [row["public_id"] for row in rows]

    async def claim_pending_rows(self, *, job_id: str, from_index: int, limit: int) -> list[ImportRowSnapshot]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_CLAIM_PENDING_ROWS, job_id, from_index, limit)
        return [_row_snapshot(row) for row in rows]

    async def min_pending_index(self, *, job_id: str) -> int | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(SQL_MIN_PENDING_INDEX, job_id)
        return int(value) if value is not None else None

    async def count_pending_rows(self, *, job_id: str) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            value = await conn.fetchval(SQL_COUNT_PENDING_ROWS, job_id)
        return int(value or 0)

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
        if status == RowStatus.PENDING:
            raise DomainInvariantError("rows cannot be marked back to PENDING")
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(
                SQL_MARK_ROW,
                job_id,
                row_index,
                status.value,
                error_code,
                resolved_email,
                artifact_key,
            )
        return updated is not None

    async def defer_row(self, *, job_id: str, row_index: int, error_code: str) -> int | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            attempts = await conn.fetchval(SQL_DEFER_ROW, job_id, row_index, error_code)
        return int(attempts) if attempts is not None else None

    async def complete_job(self, *, job_id: str) -> ImportJobSnapshot:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_COMPLETE_JOB, job_id)
        if row is None:
            raise DomainInvariantError(f"job cannot be completed: {job_id}")
        return _job_snapshot(row)

    async def list_rows(
        self,
        *,
        job_id: str,
        statuses: Sequence[RowStatus] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[ImportRowSnapshot]:
        status_values = [status.value for status in statuses] if statuses is not None else None
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_ROWS, job_id, status_values, limit, offset)
        return [_row_snapshot(row) for row in rows]

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
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(
                SQL_UPSERT_RECEIPT,
                period,
                member_id,
                branch,
                name,
                amount_cents,
                issue_date,
                artifact_key,
                status.value,
                error_code,
            )

    async def get_receipt(self, *, period: int, member_id: str) -> ReceiptRecord | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_RECEIPT, period, member_id)
        if row is None:
            return None
        return _receipt_record(row)

    async def list_receipts(self, *, period: int) -> list[ReceiptRecord]:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_RECEIPTS, period)
        return [_receipt_record(row) for row in rows]


@dataclass
class PostgresImportQueue(_PoolBound):
    max_deliveries: int = 5

    async def enqueue(self, message: QueueMessage, *, delay_ms: int = 0) -> str:
        pool = self._pool()
        async with pool.acquire() as conn:
            for _ in range(5):
                try:
                    return await conn.fetchval(
                        SQL_ENQUEUE_MESSAGE,
                        new_message_public_id(),
                        message.type.value,
                        message.job_id,
                        delay_ms / 1000,
                    )
                except Exception as exc:
                    if _is_unique_violation(exc):
                        continue
                    raise
        raise DomainInvariantError("failed to allocate unique message public id")

    async def receive(self, *, consumer_id: str, lease_seconds: int = 30) -> QueueDelivery | None:
        pool = self._pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(SQL_RECEIVE_MESSAGE, consumer_id, float(lease_seconds))
        if row is None:
            return None
        return QueueDelivery(
            delivery_id=row["public_id"],
            message=QueueMessage(type=MessageType(row["message_type"]), job_id=row["job_id"]),
            attempt=row["attempts"],
            lease_expires_at=row["lease_expires_at"],
        )

    async def extend_lease(self, *, delivery_id: str, consumer_id: str, lease_seconds: int = 30) -> bool:
        pool = self._pool()
        async with pool.acquire() as conn:
            updated = await conn.fetchval(SQL_EXTEND_MESSAGE_LEASE, delivery_id, consumer_id, float(lease_seconds))
        return updated is not None

    async def ack(self, *, delivery_id: str) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_ACK_MESSAGE, delivery_id)

    async def retry(self, *, delivery_id: str, delay_ms: int, error: str) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.fetchrow(SQL_RETRY_MESSAGE, delivery_id, delay_ms / 1000, error, self.max_deliveries)

    async def reclaim_expired_deliveries(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_RECLAIM_MESSAGES, self.max_deliveries)
        return len(rows)


def _job_snapshot(row: Mapping[str, Any]) -> ImportJobSnapshot:
    return ImportJobSnapshot(
        job_id=row["public_id"],
        period=row["period"],
        total_rows=row["total_rows"],
        processed_rows=row["processed_rows"],
        ok_rows=row["ok_rows"],
        failed_rows=row["failed_rows"],
        resume_cursor=row["resume_cursor"],
        status=JobStatus(row["status"]),
        phase=JobPhase(row["phase"]),
        source_key=row["source_key"],
        last_error=row["last_error"],
        lease_owner=row["lease_owner"],
        lease_expires_at=row["lease_expires_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_snapshot(row: Mapping[str, Any]) -> ImportRowSnapshot:
    raw_fields = row["raw_fields"]
    return ImportRowSnapshot(
        job_id=row["job_id"],
        row_index=row["row_index"],
        raw_fields={str(key): str(value) for key, value in dict(raw_fields or {}).items()},
        status=RowStatus(row["status"]),
        resolved_email=row["resolved_email"],
        artifact_key=row["artifact_key"],
        error_code=row["error_code"],
        attempts=row["attempts"],
        updated_at=row["updated_at"],
    )


def _receipt_record(row: Mapping[str, Any]) -> ReceiptRecord:
    return ReceiptRecord(
        period=row["period"],
        member_id=row["member_id"],
        branch=row["branch"],
        name=row["name"],
        amount_cents=row["amount_cents"],
        issue_date=row["issue_date"],
        artifact_key=row["artifact_key"],
        status=ReceiptStatus(row["status"]),
        error_code=row["error_code"],
        updated_at=row["updated_at"],
    )
