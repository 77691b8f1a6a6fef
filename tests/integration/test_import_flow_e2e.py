from __future__ import annotations

import time
from pathlib import Path

import fitz
from fastapi.testclient import TestClient
import pytest

from receipts.api.http_app import build_app
from receipts.clients.stub import StubDirectoryClient
from receipts.domain.artifacts import FONT_KEY, TEMPLATE_KEY
from receipts.roles import validate_role
from receipts.services.bootstrap import build_runtime_container
from receipts.workers.runner import WorkerRuntimeSettings
from tests.integration.import_harness import clear_runtime_env

FAST_WORKER = WorkerRuntimeSettings(poll_interval_ms=1, idle_backoff_ms=5, error_backoff_ms=5)


def _write_template(root: Path) -> None:
    template = fitz.open()
    template.new_page(width=612, height=792)
    (root / TEMPLATE_KEY).parent.mkdir(parents=True, exist_ok=True)
    (root / TEMPLATE_KEY).write_bytes(template.tobytes())
    template.close()
    (root / FONT_KEY).parent.mkdir(parents=True, exist_ok=True)
    (root / FONT_KEY).write_bytes(fitz.Font("helv").buffer)


def _wait_for_status(client: TestClient, job_id: str, status: str, timeout_s: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout_s
    while True:
        job = client.get(f"/imports/{job_id}").json()
        if job["status"] == status or time.monotonic() > deadline:
            return job
        time.sleep(0.02)


@pytest.mark.integration
def test_worker_role_imports_csv_and_renders_pdf_receipts(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clear_runtime_env(monkeypatch)
    monkeypatch.setenv("OBJECT_STORAGE_ROOT", str(tmp_path))
    monkeypatch.setenv("IMPORT_BATCH_SIZE", "2")
    monkeypatch.setenv("IMPORT_RETRY_WAIT_MS", "1")
    _write_template(tmp_path)

    role = validate_role("worker-import")
    container = build_runtime_container(role)
    assert isinstance(container.directory, StubDirectoryClient)
    container.directory.add_contact("M1", email="one@example.org", display_name="Member One", tags=("2023",))
    container.directory.add_contact("M2", email="two@example.org", display_name="Member Two")
    container.directory.add_contact("M4", email=None, display_name="No Email")

    app = build_app(
        role=role.name,
        run_id="integration-e2e",
        worker_loop=container.worker_loop,
        worker_runtime_settings=FAST_WORKER,
        api_deps=container.api_deps,
        on_startup=container.on_startup,
        on_shutdown=container.on_shutdown,
    )
    csv_text = (
        "Member_ID,Branch,Amount,Year,Note\n"
        'M1,"North, Main","$1,234.56",2024,first\n'
        "M2,South,(10.00),2024,\n"
        "M3,East,5,2024,\n"
        "M4,West,5,,\n"
        ",West,5,2024,\n"
    )

    with TestClient(app) as client:
        assert client.get("/ready").json()["worker_loop_enabled"] is True
        job_id = client.post("/imports", content=csv_text, headers={"content-type": "text/csv"}).json()["job_id"]

        job = _wait_for_status(client, job_id, "DONE")
        assert job["status"] == "DONE", job
        assert (job["total_rows"], job["processed_rows"], job["ok_rows"], job["failed_rows"]) == (5, 5, 2, 3)

        rows = client.get(f"/imports/{job_id}/rows").json()["items"]
        assert [(row["status"], row["error_code"]) for row in rows] == [
            ("DONE", None),
            ("DONE", None),
            ("ERROR", "lookup_not_found"),
            ("NEEDS_INPUT", "missing_email"),
            ("ERROR", "invalid_row"),
        ]

        artifact = client.get("/receipts/M1/2024/artifact")
        assert artifact.status_code == 200
        document = fitz.open(stream=artifact.content, filetype="pdf")
        try:
            text = document[0].get_text()
        finally:
            document.close()
        assert "Member One" in text
        assert "1234.56" in text

        replay = client.post(f"/imports/{job_id}/resubmit").json()
        assert replay["resubmitted_rows"] == 3

        metrics = client.get("/ready").json()["worker_metrics"]
        assert metrics["claims_total"] >= 4

    assert (tmp_path / "receipts" / "M2" / "2024.pdf").is_file()
    assert (tmp_path / "uploads" / f"{job_id}.csv").read_text(encoding="utf-8") == csv_text
    assert container.directory.write_backs["M1"] == ("2023", "2024")
