from __future__ import annotations

from dataclasses import dataclass, field

from receipts.domain.models import JobStatus


@dataclass(frozen=True)
class SubmitImportCommand:
    csv_text: str


@dataclass(frozen=True)
class SubmitImportResult:
    job_id: str
    period: int
    total_rows: int
    status: JobStatus


@dataclass(frozen=True)
class ParseImportCommand:
    job_id: str


@dataclass(frozen=True)
class ParseImportResult:
    job_id: str
    total_rows: int = 0
    skipped_reason: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class ValidateImportCommand:
    csv_text: str
    max_rows: int = 1000


@dataclass(frozen=True)
class ValidationIssue:
    type: str
    row: int
    member_id: str = ""


@dataclass(frozen=True)
class ValidateImportResult:
    ok: bool
    checked_rows: int
    header: tuple[str, ...]
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error_code: str | None = None


@dataclass(frozen=True)
class ResubmitImportCommand:
    job_id: str


@dataclass(frozen=True)
class ResubmitImportResult:
    ok: bool
    source_job_id: str
    job_id: str | None = None
    period: int | None = None
    resubmitted_rows: int = 0
    error_code: str | None = None
