import pytest

from receipts.settings import (
    DirectorySettings,
    ImportSettings,
    directory_settings_from_env,
    import_settings_from_env,
)


@pytest.mark.unit
def test_import_settings_read_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMPORT_BATCH_SIZE", "10")
    monkeypatch.setenv("IMPORT_TIME_BUDGET_MS", "1000")
    monkeypatch.setenv("IMPORT_CALL_BUDGET", "12")
    monkeypatch.setenv("IMPORT_LOOKUP_RETRIES", "1")
    monkeypatch.setenv("IMPORT_RETRY_WAIT_MS", "50")
    monkeypatch.setenv("IMPORT_JOB_LEASE_SECONDS", "30")
    monkeypatch.setenv("IMPORT_MAX_ROW_ATTEMPTS", "5")
    monkeypatch.setenv("IMPORT_DEPENDENCY_RETRY_MS", "90000")

    assert import_settings_from_env() == ImportSettings(
        batch_size=10,
        time_budget_ms=1000,
        call_budget=12,
        lookup_retries=1,
        retry_wait_ms=50,
        job_lease_seconds=30,
        max_row_attempts=5,
        dependency_retry_ms=90000,
    )


@pytest.mark.unit
def test_import_settings_fall_back_on_bad_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMPORT_BATCH_SIZE", "many")
    monkeypatch.setenv("IMPORT_CALL_BUDGET", "0")
    monkeypatch.setenv("IMPORT_TIME_BUDGET_MS", "-5")

    assert import_settings_from_env() == ImportSettings()


@pytest.mark.unit
def test_directory_settings_require_a_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DIRECTORY_ACCESS_TOKEN", raising=False)
    assert directory_settings_from_env() is None

    monkeypatch.setenv("DIRECTORY_ACCESS_TOKEN", "secret")
    monkeypatch.setenv("DIRECTORY_BASE_URL", "https://crm.internal")
    monkeypatch.setenv("DIRECTORY_TIMEOUT_SECONDS", "3")

    assert directory_settings_from_env() == DirectorySettings(
        base_url="https://crm.internal",
        access_token="secret",
        timeout_seconds=3.0,
    )
