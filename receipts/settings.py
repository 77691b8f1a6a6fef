from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = 25
    time_budget_ms: int = 2500
    call_budget: int = 35
    lookup_retries: int = 2
    retry_wait_ms: int = 200
    job_lease_seconds: int = 60
    max_row_attempts: int = 3
    dependency_retry_ms: int = 60000


@dataclass(frozen=True)
class DirectorySettings:
    base_url: str
    access_token: str
    timeout_seconds: float = 10.0


def import_settings_from_env() -> ImportSettings:
    return ImportSettings(
        batch_size=env_int("IMPORT_BATCH_SIZE", 25),
        time_budget_ms=env_int("IMPORT_TIME_BUDGET_MS", 2500),
        call_budget=env_int("IMPORT_CALL_BUDGET", 35),
        lookup_retries=env_int("IMPORT_LOOKUP_RETRIES", 2),
        retry_wait_ms=env_int("IMPORT_RETRY_WAIT_MS", 200),
        job_lease_seconds=env_int("IMPORT_JOB_LEASE_SECONDS", 60),
        max_row_attempts=env_int("IMPORT_MAX_ROW_ATTEMPTS", 3),
        dependency_retry_ms=env_int("IMPORT_DEPENDENCY_RETRY_MS", 60000),
    )


def directory_settings_from_env() -> DirectorySettings | None:
    token = os.getenv("DIRECTORY_ACCESS_TOKEN")
    if not token:
        return None
    return DirectorySettings(
        base_url=os.getenv("DIRECTORY_BASE_URL", "https://api.hubapi.com"),
        access_token=token,
        timeout_seconds=float(env_int("DIRECTORY_TIMEOUT_SECONDS", 10)),
    )


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default
