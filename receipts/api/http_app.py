from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
import logging

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import Response

from receipts.api.handlers.deps import ApiDeps
from receipts.api.handlers.imports import (
    get_import_job_handler,
    list_import_rows_handler,
    resubmit_import_handler,
    submit_import_handler,
    validate_import_handler,
)
from receipts.api.handlers.receipts import get_receipt_artifact_handler, list_receipts_handler
from receipts.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ImportJobResponse,
    ImportRowsResponse,
    ReadyResponse,
    ReceiptListResponse,
    ResubmitImportResponse,
    SubmitImportResponse,
    ValidateImportResponse,
    WorkerMetrics,
)
from receipts.domain.errors import FatalInputError
from receipts.domain.models import RowStatus
from receipts.lib.artifacts.codecs import decode_source
from receipts.workers.loop import QueueWorkerLoop
from receipts.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

UPLOAD_FIELD = "file"


async def _read_csv_upload(request: Request) -> str:
    """CSV text from a raw request body or from the `file` part of a multipart form."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get(UPLOAD_FIELD)
        if upload is None or isinstance(upload, str):
            raise HTTPException(status_code=400, detail=f"multipart field '{UPLOAD_FIELD}' is required")
        payload = await upload.read()
    else:
        payload = await request.body()
    try:
        return decode_source(payload)
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded") from exc


def build_app(
    role: str,
    run_id: str,
    worker_loop: QueueWorkerLoop | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker_loop is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker_loop=worker_loop,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            await worker_task

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="receipt-import", version="0.1.0", lifespan=lifespan)

    def _require_deps() -> ApiDeps:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        return api_deps

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role)

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker_loop is not None
        worker_loop_ready = True
        metrics = WorkerMetrics(
            started=False,
            stopped=False,
            ticks_total=0,
            claims_total=0,
            idle_ticks_total=0,
            errors_total=0,
        )
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = WorkerMetrics(
                    started=worker_state.started,
                    stopped=worker_state.stopped,
                    ticks_total=worker_state.ticks_total,
                    claims_total=worker_state.claims_total,
                    idle_ticks_total=worker_state.idle_ticks_total,
                    errors_total=worker_state.errors_total,
                )

        return ReadyResponse(
            status="ready",
            role=role,
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=metrics,
        )

    @app.post(
        "/imports",
        response_model=SubmitImportResponse,
        responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Imports"],
    )
    async def submit_import(request: Request) -> SubmitImportResponse:
        deps = _require_deps()
        csv_text = await _read_csv_upload(request)
        try:
            return await submit_import_handler(csv_text=csv_text, api_deps=deps)
        except FatalInputError as exc:
            raise HTTPException(status_code=400, detail=f"{exc.code}: {exc}") from exc

    # Registered before /imports/{job_id} so "validate" is never read as a job id.
    @app.post(
        "/imports/validate",
        response_model=ValidateImportResponse,
        responses={400: {"model": ErrorResponse}},
        tags=["Imports"],
    )
    async def validate_import(
        request: Request,
        max_rows: int = Query(default=1000, ge=1, le=1000),
    ) -> ValidateImportResponse:
        csv_text = await _read_csv_upload(request)
        return await validate_import_handler(csv_text=csv_text, max_rows=max_rows)

    @app.get(
        "/imports/{job_id}",
        response_model=ImportJobResponse,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Imports"],
    )
    async def get_import_job(job_id: str) -> ImportJobResponse:
        job = await get_import_job_handler(job_id=job_id, api_deps=_require_deps())
        if job is None:
            raise HTTPException(status_code=404, detail="import job not found")
        return job

    @app.get(
        "/imports/{job_id}/rows",
        response_model=ImportRowsResponse,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Imports"],
    )
    async def list_import_rows(
        job_id: str,
        status: list[RowStatus] | None = Query(default=None),
        limit: int = Query(default=100, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
    ) -> ImportRowsResponse:
        rows = await list_import_rows_handler(
            job_id=job_id,
            statuses=status,
            limit=limit,
            offset=offset,
            api_deps=_require_deps(),
        )
        if rows is None:
            raise HTTPException(status_code=404, detail="import job not found")
        return rows

    @app.post(
        "/imports/{job_id}/resubmit",
        response_model=ResubmitImportResponse,
        responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Imports"],
    )
    async def resubmit_import(job_id: str) -> ResubmitImportResponse:
        result = await resubmit_import_handler(job_id=job_id, api_deps=_require_deps())
        if result is None:
            raise HTTPException(status_code=404, detail="import job not found")
        return result

    @app.get("/receipts", response_model=ReceiptListResponse, tags=["Receipts"])
    async def list_receipts(period: int = Query(ge=2000, le=2100)) -> ReceiptListResponse:
        return await list_receipts_handler(period=period, api_deps=_require_deps())

    @app.get(
        "/receipts/{member_id}/{period}/artifact",
        response_class=Response,
        responses={404: {"model": ErrorResponse}},
        tags=["Receipts"],
    )
    async def get_receipt_artifact(member_id: str, period: int) -> Response:
        payload = await get_receipt_artifact_handler(member_id=member_id, period=period, api_deps=_require_deps())
        if payload is None:
            raise HTTPException(status_code=404, detail="receipt artifact not found")
        return Response(
            content=payload,
            media_type="application/pdf",
            headers={"Content-Disposition": f'inline; filename="receipt-{period}.pdf"'},
        )

    return app
