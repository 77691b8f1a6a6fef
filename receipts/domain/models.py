from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import StrEnum

from receipts.domain.error_taxonomy import ErrorCode, RetryClassification


# Canonical job/row states.
#
# IMPORTANT:
# - Keep these enums synchronized with receipts/domain/lifecycle.py.
# - Keep these enums synchronized with the DB CHECK constraints in
#   db/migrations/000001_bootstrap.up.sql.
class JobStatus(StrEnum):
    READY = "READY"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"


class JobPhase(StrEnum):
    PARSING = "PARSING"
    PROCESSING = "PROCESSING"


class RowStatus(StrEnum):
    PENDING = "PENDING"
    DONE = "DONE"
    ERROR = "ERROR"
    NEEDS_INPUT = "NEEDS_INPUT"


class ReceiptStatus(StrEnum):
    DONE = "DONE"
    ERROR = "ERROR"
    NEEDS_INPUT = "NEEDS_INPUT"


class MessageType(StrEnum):
    PARSE = "parse"
    PROCESS = "process"


@dataclass(frozen=True)
class ImportJobSnapshot:
    job_id: str
    period: int
    total_rows: int
    processed_rows: int
    ok_rows: int
    failed_rows: int
    resume_cursor: int
    status: JobStatus
    phase: JobPhase
    source_key: str
    last_error: str | None = None
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ImportRowSnapshot:
    job_id: str
    row_index: int
    raw_fields: dict[str, str]
    status: RowStatus
    resolved_email: str | None = None
    artifact_key: str | None = None
    error_code: str | None = None
    attempts: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ReceiptRecord:
    period: int
    member_id: str
    branch: str
    name: str
    amount_cents: int
    issue_date: date | None
    artifact_key: str | None
    status: ReceiptStatus
    error_code: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class RawRow:
    """Row exactly as decoded: lower-cased header names mapped to trimmed cells."""

    row_index: int
    fields: Mapping[str, str]

    def get(self, name: str) -> str:
        return self.fields.get(name, "")


@dataclass(frozen=True)
class ValidRow:
    row_index: int
    member_id: str
    branch: str
    amount_cents: int
    period: int


@dataclass(frozen=True)
class InvalidRow:
    row_index: int
    member_id: str
    reasons: tuple[str, ...]


ParsedRow = ValidRow | InvalidRow


@dataclass(frozen=True)
class DirectoryContact:
    member_id: str
    email: str | None
    display_name: str
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class QueueMessage:
    type: MessageType
    job_id: str


@dataclass(frozen=True)
class QueueDelivery:
    delivery_id: str
    message: QueueMessage
    attempt: int
    lease_expires_at: datetime | None = None


@dataclass(frozen=True)
class ProcessResult:
    success: bool
    detail: str = ""
    error_code: ErrorCode | None = None
    retry_classification: RetryClassification | None = None


class StopReason(StrEnum):
    BATCH_COMPLETE = "batch_complete"
    TIME_BUDGET = "time_budget"
    CALL_BUDGET = "call_budget"


@dataclass(frozen=True)
class BatchOutcome:
    job_id: str
    skipped_reason: str | None = None
    processed: int = 0
    ok: int = 0
    failed: int = 0
    deferred: int = 0
    resume_cursor: int | None = None
    stop_reason: StopReason | None = None
    requeued: bool = False
    finished: bool = False

    def describe(self) -> str:
        if self.skipped_reason is not None:
            return f"skipped:{self.skipped_reason}"
        state = "finished" if self.finished else "requeued" if self.requeued else "idle"
        return (
            f"{state} ok={self.ok} failed={self.failed} deferred={self.deferred} "
            f"cursor={self.resume_cursor} stop={self.stop_reason}"
        )


@dataclass(frozen=True)
class ReceiptFields:
    name: str
    period: int
    amount: str
    issue_date: str


class RowOutcome(StrEnum):
    OK = "ok"
    FAILED = "failed"
    DEFERRED = "deferred"
    # Another writer already moved the row out of PENDING.
    UNCHANGED = "unchanged"


@dataclass
class RowTally:
    ok: int = 0
    failed: int = 0
    deferred: int = 0
    unchanged: int = 0

    @property
    def processed(self) -> int:
        return self.ok + self.failed + self.deferred + self.unchanged

    def record(self, outcome: RowOutcome) -> None:
        if outcome == RowOutcome.OK:
            self.ok += 1
        elif outcome == RowOutcome.FAILED:
            self.failed += 1
        elif outcome == RowOutcome.DEFERRED:
            self.deferred += 1
        else:
            self.unchanged += 1
