from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date
from typing import Protocol, runtime_checkable

from receipts.domain.artifacts import RECEIPTS_PREFIX, TEMPLATES_PREFIX, UPLOADS_PREFIX
from receipts.domain.models import (
    DirectoryContact,
    ImportJobSnapshot,
    ImportRowSnapshot,
    QueueDelivery,
    QueueMessage,
    ReceiptFields,
    ReceiptRecord,
    ReceiptStatus,
    RowStatus,
)

STORAGE_PREFIXES = (
    UPLOADS_PREFIX,
    TEMPLATES_PREFIX,
    RECEIPTS_PREFIX,
)


@runtime_checkable
class ImportRepository(Protocol):
    """Durable job, row and receipt records.

    Row writes only ever move a row out of PENDING; progress updates never move
    the resume cursor backwards.
    """

    async def create_job(self, *, job_id: str, period: int, source_key: str) -> ImportJobSnapshot: ...

    async def get_job(self, *, job_id: str) -> ImportJobSnapshot | None: ...

    async def fail_job(self, *, job_id: str, error_code: str) -> None: ...

    # Insert decoded rows as PENDING; rows that already exist are left untouched.
    async def insert_rows(self, *, job_id: str, rows: Sequence[Mapping[str, str]]) -> int: ...

    async def start_processing(self, *, job_id: str, total_rows: int) -> bool: ...

    async def acquire_job_lease(self, *, job_id: str, owner: str, lease_seconds: int) -> bool: ...

    async def release_job_lease(self, *, job_id: str, owner: str) -> None: ...

    # Clear expired leases of running jobs and return their ids for re-enqueue.
    async def reclaim_expired_job_leases(self) -> list[str]: ...

    async def claim_pending_rows(self, *, job_id: str, from_index: int, limit: int) -> list[ImportRowSnapshot]: ...

    async def min_pending_index(self, *, job_id: str) -> int | None: ...

    async def count_pending_rows(self, *, job_id: str) -> int: ...

    # Move a PENDING row to its final status. The same write counts the row in
    # ok_rows/failed_rows and advances resume_cursor past it. Returns False when
    # the row had already left PENDING, in which case nothing changes.
    async def mark_row(
        self,
        *,
        job_id: str,
        row_index: int,
        status: RowStatus,
        error_code: str | None = None,
        resolved_email: str | None = None,
        artifact_key: str | None = None,
    ) -> bool: ...

    # Keep the row PENDING, count a failed attempt and advance resume_cursor
    # past it. Returns the new attempt count, or None if the row is not PENDING.
    async def defer_row(self, *, job_id: str, row_index: int, error_code: str) -> int | None: ...

    async def complete_job(self, *, job_id: str) -> ImportJobSnapshot: ...

    async def list_rows(
        self,
        *,
        job_id: str,
        statuses: Sequence[RowStatus] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[ImportRowSnapshot]: ...

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
    ) -> None: ...

    async def get_receipt(self, *, period: int, member_id: str) -> ReceiptRecord | None: ...

    async def list_receipts(self, *, period: int) -> list[ReceiptRecord]: ...


@runtime_checkable
class ImportQueue(Protocol):
    """At-least-once message queue with visibility leases and a delivery cap."""

    async def enqueue(self, message: QueueMessage, *, delay_ms: int = 0) -> str: ...

    async def receive(self, *, consumer_id: str, lease_seconds: int = 30) -> QueueDelivery | None: ...

    async def extend_lease(self, *, delivery_id: str, consumer_id: str, lease_seconds: int = 30) -> bool: ...

    async def ack(self, *, delivery_id: str) -> None: ...

    async def retry(self, *, delivery_id: str, delay_ms: int, error: str) -> None: ...

    async def reclaim_expired_deliveries(self) -> int: ...


@runtime_checkable
class StorageClient(Protocol):
    """Storage contract using single-bucket, prefix-scoped paths."""

    def put_bytes(self, *, key: str, payload: bytes) -> str: ...

    def get_bytes(self, *, key: str) -> bytes: ...


@runtime_checkable
class DirectoryClient(Protocol):
    # None means the directory has no contact for the key.
    async def resolve(self, *, member_id: str) -> DirectoryContact | None: ...

    async def write_back_tags(self, *, member_id: str, tags: Sequence[str]) -> None: ...


@runtime_checkable
class ReceiptRenderer(Protocol):
    def render(self, fields: ReceiptFields) -> bytes: ...


@runtime_checkable
class ArtifactRepository(Protocol):
    """Typed artifact I/O boundary.

    Use-cases rely on this contract and never build storage keys or encode payloads themselves.
    """

    def save_source(self, *, job_id: str, csv_text: str) -> str: ...

    def load_source(self, *, source_key: str) -> str: ...

    def save_receipt(self, *, member_id: str, period: int, payload: bytes) -> str: ...

    def load_receipt(self, *, member_id: str, period: int) -> bytes: ...
