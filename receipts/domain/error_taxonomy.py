from __future__ import annotations

from collections.abc import Mapping
from typing import Literal, cast, get_args

# Canonical error vocabulary for jobs, rows and worker invocations.
ErrorCode = Literal[
    "empty_csv",
    "no_rows",
    "missing_column",
    "source_missing",
    "invalid_row",
    "lookup_not_found",
    "lookup_unavailable",
    "missing_email",
    "write_back_failed",
    "template_unavailable",
    "directory_unauthorized",
    "job_not_finished",
    "nothing_to_resubmit",
    "internal_error",
]

RetryClassification = Literal["recoverable", "terminal"]

# Allowed persisted values for job.last_error and row.error_code.
CANONICAL_ERROR_CODES: frozenset[str] = frozenset(get_args(ErrorCode))

# Errors a later invocation can still fix without operator action.
RECOVERABLE_ERROR_CODES: frozenset[ErrorCode] = frozenset(
    {
        "lookup_unavailable",
        "write_back_failed",
        "template_unavailable",
        "directory_unauthorized",
        "internal_error",
    }
)

# Stage-specific allowlist. Codes outside the map collapse to internal_error.
STAGE_ERROR_MAP: Mapping[str, frozenset[ErrorCode]] = {
    "submit": frozenset(
        {
            "empty_csv",
            "no_rows",
            "missing_column",
            "internal_error",
        }
    ),
    "parse": frozenset(
        {
            "empty_csv",
            "no_rows",
            "missing_column",
            "source_missing",
            "internal_error",
        }
    ),
    "row": frozenset(
        {
            "invalid_row",
            "lookup_not_found",
            "lookup_unavailable",
            "missing_email",
            "internal_error",
        }
    ),
    "process": frozenset(
        {
            "write_back_failed",
            "template_unavailable",
            "directory_unauthorized",
            "internal_error",
        }
    ),
    "resubmit": frozenset(
        {
            "job_not_finished",
            "nothing_to_resubmit",
            "internal_error",
        }
    ),
}


def classify_error(code: ErrorCode) -> RetryClassification:
    return "recoverable" if code in RECOVERABLE_ERROR_CODES else "terminal"


def resolve_stage_error(*, stage: str, code: str) -> ErrorCode:
    """Collapse codes a stage may not persist to internal_error."""
    if code in CANONICAL_ERROR_CODES and code in STAGE_ERROR_MAP.get(stage, ()):
        return cast(ErrorCode, code)
    return "internal_error"
