from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import os
from pathlib import Path

from receipts.api.handlers.deps import ApiDeps
from receipts.clients.directory import HttpDirectoryClient
from receipts.clients.storage import FilesystemStorageClient
from receipts.clients.stub import StubDirectoryClient, StubStorageClient
from receipts.domain.contracts import (
    ArtifactRepository,
    DirectoryClient,
    ImportQueue,
    ImportRepository,
    ReceiptRenderer,
    StorageClient,
)
from receipts.lib.artifacts import build_artifact_repository, build_receipt_renderer
from receipts.repositories.postgres import AsyncpgPoolManager, PostgresImportQueue, PostgresImportRepository
from receipts.repositories.stub import InMemoryImportQueue, InMemoryImportRepository
from receipts.roles import RuntimeRole
from receipts.settings import directory_settings_from_env, import_settings_from_env
from receipts.workers.handlers.deps import WorkerDeps
from receipts.workers.handlers.factory import build_message_handler
from receipts.workers.loop import QueueWorkerLoop
from receipts.workers.runner import worker_runtime_settings_from_env

Hook = Callable[[], Awaitable[None]]


@dataclass
class RuntimeContainer:
    repository: ImportRepository
    queue: ImportQueue
    artifact_repository: ArtifactRepository
    storage: StorageClient
    directory: DirectoryClient
    renderer: ReceiptRenderer
    api_deps: ApiDeps
    worker_loop: QueueWorkerLoop | None
    on_startup: Hook | None
    on_shutdown: Hook | None


def _chain(hooks: list[Hook]) -> Hook | None:
    if not hooks:
        return None

    async def _run_all() -> None:
        for hook in hooks:
            await hook()

    return _run_all


def build_runtime_container(role: RuntimeRole) -> RuntimeContainer:
    database_url = os.getenv("DATABASE_URL")
    startup_hooks: list[Hook] = []
    shutdown_hooks: list[Hook] = []
    runtime_settings = worker_runtime_settings_from_env()

    if database_url:
        pool_manager = AsyncpgPoolManager(dsn=database_url)
        repository: ImportRepository = PostgresImportRepository(pool_manager=pool_manager)
        queue: ImportQueue = PostgresImportQueue(
            pool_manager=pool_manager,
            max_deliveries=runtime_settings.max_deliveries,
        )
        startup_hooks.append(pool_manager.startup)
        shutdown_hooks.append(pool_manager.shutdown)
    else:
        repository = InMemoryImportRepository()
        queue = InMemoryImportQueue(max_deliveries=runtime_settings.max_deliveries)

    storage_root = os.getenv("OBJECT_STORAGE_ROOT")
    storage: StorageClient = FilesystemStorageClient(root=Path(storage_root)) if storage_root else StubStorageClient()
    artifact_repository = build_artifact_repository(storage=storage)

    directory_settings = directory_settings_from_env()
    if directory_settings is not None:
        http_directory = HttpDirectoryClient.from_settings(directory_settings)
        directory: DirectoryClient = http_directory
        shutdown_hooks.append(http_directory.aclose)
    else:
        directory = StubDirectoryClient()

    renderer = build_receipt_renderer(storage=storage)
    api_deps = ApiDeps(
        repository=repository,
        queue=queue,
        artifact_repository=artifact_repository,
        storage=storage,
    )

    worker_loop: QueueWorkerLoop | None = None
    if role.runs_worker:
        worker_deps = WorkerDeps(
            repository=repository,
            queue=queue,
            artifact_repository=artifact_repository,
            storage=storage,
            directory=directory,
            renderer=renderer,
            settings=import_settings_from_env(),
        )
        worker_loop = QueueWorkerLoop(
            role=role.name,
            queue=queue,
            repository=repository,
            process=build_message_handler(role.name, worker_deps),
            message_lease_seconds=runtime_settings.message_lease_seconds,
            heartbeat_interval_ms=runtime_settings.heartbeat_interval_ms,
            retry_delay_ms=runtime_settings.error_backoff_ms,
        )

    return RuntimeContainer(
        repository=repository,
        queue=queue,
        artifact_repository=artifact_repository,
        storage=storage,
        directory=directory,
        renderer=renderer,
        api_deps=api_deps,
        worker_loop=worker_loop,
        on_startup=_chain(startup_hooks),
        on_shutdown=_chain(shutdown_hooks),
    )
