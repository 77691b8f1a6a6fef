from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date

from receipts.clients.stub import StubDirectoryClient, StubReceiptRenderer, StubStorageClient
from receipts.domain.contracts import ArtifactRepository
from receipts.domain.use_cases.process_rows import BatchScheduler
from receipts.lib.artifacts.factory import build_artifact_repository
from receipts.repositories.stub import InMemoryImportQueue, InMemoryImportRepository
from receipts.settings import ImportSettings

ISSUE_DATE = date(2025, 1, 15)
FAST_SETTINGS = ImportSettings(retry_wait_ms=0)


def csv_row(member_id: str, *, branch: str = "North", amount: str = "10.00", year: str = "2024") -> dict[str, str]:
    return {"member_id": member_id, "branch": branch, "amount": amount, "year": year}


async def seed_processing_job(
    repository: InMemoryImportRepository,
    *,
    rows: Sequence[dict[str, str]],
    job_id: str = "job_test",
    period: int = 2024,
) -> str:
    await repository.create_job(job_id=job_id, period=period, source_key=f"uploads/{job_id}.csv")
    await repository.insert_rows(job_id=job_id, rows=rows)
    await repository.start_processing(job_id=job_id, total_rows=len(rows))
    return job_id


@dataclass
class SchedulerHarness:
    settings: ImportSettings = FAST_SETTINGS
    clock: Callable[[], float] | None = None
    repository: InMemoryImportRepository = field(default_factory=InMemoryImportRepository)
    queue: InMemoryImportQueue = field(default_factory=InMemoryImportQueue)
    directory: StubDirectoryClient = field(default_factory=StubDirectoryClient)
    storage: StubStorageClient = field(default_factory=StubStorageClient)
    renderer: StubReceiptRenderer = field(default_factory=StubReceiptRenderer)

    @property
    def artifacts(self) -> ArtifactRepository:
        return build_artifact_repository(storage=self.storage)

    def scheduler(self) -> BatchScheduler:
        extra = {"clock": self.clock} if self.clock is not None else {}
        return BatchScheduler(
            repository=self.repository,
            directory=self.directory,
            artifacts=self.artifacts,
            renderer=self.renderer,
            queue=self.queue,
            settings=self.settings,
            today=lambda: ISSUE_DATE,
            **extra,
        )
