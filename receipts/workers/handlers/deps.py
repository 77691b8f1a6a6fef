from __future__ import annotations

from dataclasses import dataclass, field

from receipts.domain.contracts import (
    ArtifactRepository,
    DirectoryClient,
    ImportQueue,
    ImportRepository,
    ReceiptRenderer,
    StorageClient,
)
from receipts.settings import ImportSettings


@dataclass(frozen=True)
class WorkerDeps:
    repository: ImportRepository
    queue: ImportQueue
    artifact_repository: ArtifactRepository
    storage: StorageClient
    directory: DirectoryClient
    renderer: ReceiptRenderer
    settings: ImportSettings = field(default_factory=ImportSettings)
