import asyncio

from fastapi.testclient import TestClient
import pytest

from receipts.api.http_app import build_app
from receipts.clients.stub import StubDirectoryClient
from receipts.roles import validate_role
from receipts.services.bootstrap import build_runtime_container
from tests.integration.import_harness import build_stub_worker, clear_runtime_env

CSV_TEXT = "member_id,branch,amount,year\nM1,North,$12.50,2024\nM2,South,7,2024\nM3,East,abc,2024\n"


def _api(monkeypatch: pytest.MonkeyPatch):
    clear_runtime_env(monkeypatch)
    role = validate_role("api")
    container = build_runtime_container(role)
    app = build_app(
        role=role.name,
        run_id="integration-api",
        worker_loop=container.worker_loop,
        api_deps=container.api_deps,
    )
    return container, app


def _drain(worker) -> None:
    async def _run() -> None:
        while await worker.run_once():
            pass

    asyncio.run(_run())


@pytest.mark.integration
def test_system_endpoints_report_api_role(monkeypatch: pytest.MonkeyPatch) -> None:
    _container, app = _api(monkeypatch)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok", "role": "api"}
        ready = client.get("/ready").json()

    assert ready["worker_loop_enabled"] is False
    assert ready["worker_loop_ready"] is True
    assert ready["worker_metrics"]["ticks_total"] == 0


@pytest.mark.integration
def test_import_lifecycle_through_http(monkeypatch: pytest.MonkeyPatch) -> None:
    container, app = _api(monkeypatch)
    directory = StubDirectoryClient()
    directory.add_contact("M1", email="m1@example.org", display_name="Member One")
    worker = build_stub_worker(container, directory=directory)

    with TestClient(app) as client:
        submitted = client.post("/imports", content=CSV_TEXT, headers={"content-type": "text/csv"})
        assert submitted.status_code == 200
        body = submitted.json()
        job_id = body["job_id"]
        assert (body["period"], body["total_rows"], body["status"]) == (2024, 0, "RUNNING")

        pending = client.get(f"/imports/{job_id}").json()
        assert (pending["status"], pending["phase"]) == ("RUNNING", "PARSING")

        _drain(worker)

        job = client.get(f"/imports/{job_id}").json()
        assert job["status"] == "DONE"
        assert (job["total_rows"], job["processed_rows"], job["ok_rows"], job["failed_rows"]) == (3, 3, 1, 2)

        failed = client.get(f"/imports/{job_id}/rows", params={"status": "ERROR"}).json()
        assert [(row["member_id"], row["error_code"]) for row in failed["items"]] == [
            ("M2", "lookup_not_found"),
            ("M3", "invalid_row"),
        ]
        all_rows = client.get(f"/imports/{job_id}/rows", params={"limit": 2, "offset": 1}).json()
        assert [row["row_index"] for row in all_rows["items"]] == [1, 2]

        receipts = client.get("/receipts", params={"period": 2024}).json()
        assert [(item["member_id"], item["status"]) for item in receipts["items"]] == [
            ("M1", "DONE"),
            ("M2", "ERROR"),
        ]
        assert receipts["items"][0]["amount_cents"] == 1250

        artifact = client.get("/receipts/M1/2024/artifact")
        assert artifact.status_code == 200
        assert artifact.headers["content-type"] == "application/pdf"
        assert artifact.content.startswith(b"%PDF-stub Member One 2024 12.50")
        assert client.get("/receipts/M2/2024/artifact").status_code == 404

        resubmitted = client.post(f"/imports/{job_id}/resubmit").json()
        assert resubmitted["ok"] is True
        assert resubmitted["resubmitted_rows"] == 2
        again = client.post(f"/imports/{resubmitted['job_id']}/resubmit").json()
        assert (again["ok"], again["error_code"]) == (False, "job_not_finished")


@pytest.mark.integration
def test_multipart_upload_is_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    _container, app = _api(monkeypatch)

    with TestClient(app) as client:
        response = client.post(
            "/imports",
            files={"file": ("donations.csv", CSV_TEXT.encode("utf-8"), "text/csv")},
        )
        missing_part = client.post("/imports", files={"other": ("x.csv", b"member_id\nM1\n", "text/csv")})

    assert response.status_code == 200
    assert response.json()["job_id"].startswith("job_")
    assert missing_part.status_code == 400


@pytest.mark.integration
@pytest.mark.parametrize(
    ("payload", "detail_prefix"),
    [
        (b"", "empty_csv"),
        (b"branch,amount\nNorth,1\n", "missing_column"),
        (b"member_id,branch\n", "no_rows"),
        (b"\xff\xfe\x00bad", "CSV must be UTF-8"),
    ],
)
def test_malformed_submissions_are_rejected(
    monkeypatch: pytest.MonkeyPatch,
    payload: bytes,
    detail_prefix: str,
) -> None:
    container, app = _api(monkeypatch)

    with TestClient(app) as client:
        response = client.post("/imports", content=payload, headers={"content-type": "text/csv"})

    assert response.status_code == 400
    assert response.json()["detail"].startswith(detail_prefix)
    assert container.queue.pending_messages() == []


@pytest.mark.integration
def test_unknown_jobs_return_404(monkeypatch: pytest.MonkeyPatch) -> None:
    _container, app = _api(monkeypatch)

    with TestClient(app) as client:
        assert client.get("/imports/job_missing").status_code == 404
        assert client.get("/imports/job_missing/rows").status_code == 404
        assert client.post("/imports/job_missing/resubmit").status_code == 404


@pytest.mark.integration
def test_validate_preview_never_creates_a_job(monkeypatch: pytest.MonkeyPatch) -> None:
    container, app = _api(monkeypatch)

    with TestClient(app) as client:
        response = client.post("/imports/validate", content=CSV_TEXT, headers={"content-type": "text/csv"})
        empty = client.post("/imports/validate", content=b"", headers={"content-type": "text/csv"})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is False
    assert body["checked_rows"] == 3
    assert body["errors"] == [{"type": "INVALID_AMOUNT", "row": 4, "member_id": "M3"}]
    assert body["warnings"] == ["DIRECTORY_CHECK_SKIPPED"]
    assert empty.status_code == 200
    assert empty.json()["error_code"] == "empty_csv"
    assert container.repository.jobs == {}
