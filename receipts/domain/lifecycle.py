from __future__ import annotations

from receipts.domain.errors import DomainInvariantError
from receipts.domain.models import JobStatus, RowStatus

TERMINAL_JOB_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.DONE, JobStatus.ERROR})

ALLOWED_JOB_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.READY: {JobStatus.RUNNING, JobStatus.ERROR},
    JobStatus.RUNNING: {JobStatus.DONE, JobStatus.ERROR},
    JobStatus.DONE: set(),
    JobStatus.ERROR: set(),
}

# Rows are written once as PENDING and leave that state exactly once.
ALLOWED_ROW_TRANSITIONS: dict[RowStatus, set[RowStatus]] = {
    RowStatus.PENDING: {RowStatus.DONE, RowStatus.ERROR, RowStatus.NEEDS_INPUT},
    RowStatus.DONE: set(),
    RowStatus.ERROR: set(),
    RowStatus.NEEDS_INPUT: set(),
}


def ensure_job_transition(from_status: JobStatus, to_status: JobStatus) -> None:
    if from_status == to_status:
        return
    if to_status not in ALLOWED_JOB_TRANSITIONS.get(from_status, set()):
        raise DomainInvariantError(f"invalid job transition: {from_status} -> {to_status}")


def ensure_row_transition(from_status: RowStatus, to_status: RowStatus) -> None:
    if to_status not in ALLOWED_ROW_TRANSITIONS.get(from_status, set()):
        raise DomainInvariantError(f"invalid row transition: {from_status} -> {to_status}")
