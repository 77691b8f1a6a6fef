from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from receipts.domain.models import JobPhase, JobStatus, ReceiptStatus, RowStatus

JOB_ID_PATTERN = r"^job_[0-9A-HJKMNP-TV-Z]{26}$"


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    claims_total: int
    idle_ticks_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class SubmitImportResponse(BaseModel):
    job_id: str = Field(pattern=JOB_ID_PATTERN)
    period: int
    total_rows: int
    status: JobStatus


class ImportJobResponse(BaseModel):
    job_id: str
    period: int
    status: JobStatus
    phase: JobPhase
    total_rows: int
    processed_rows: int
    ok_rows: int
    failed_rows: int
    resume_cursor: int
    last_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ImportRowView(BaseModel):
    row_index: int
    status: RowStatus
    member_id: str
    resolved_email: str | None = None
    artifact_key: str | None = None
    error_code: str | None = None
    attempts: int = 0


class ImportRowsResponse(BaseModel):
    job_id: str
    items: list[ImportRowView]


class ValidationIssueView(BaseModel):
    type: str
    row: int
    member_id: str = ""


class ValidateImportResponse(BaseModel):
    ok: bool
    checked_rows: int
    header: list[str]
    errors: list[ValidationIssueView]
    warnings: list[str]
    error_code: str | None = None


class ResubmitImportResponse(BaseModel):
    ok: bool
    source_job_id: str
    job_id: str | None = None
    period: int | None = None
    resubmitted_rows: int = 0
    error_code: str | None = None


class ReceiptView(BaseModel):
    period: int
    member_id: str
    branch: str
    name: str
    amount_cents: int
    issue_date: date | None = None
    artifact_key: str | None = None
    status: ReceiptStatus
    error_code: str | None = None


class ReceiptListResponse(BaseModel):
    period: int
    items: list[ReceiptView]
