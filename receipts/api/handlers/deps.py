from __future__ import annotations

from dataclasses import dataclass

from receipts.domain.contracts import ArtifactRepository, ImportQueue, ImportRepository, StorageClient


@dataclass(frozen=True)
class ApiDeps:
    repository: ImportRepository
    queue: ImportQueue
    artifact_repository: ArtifactRepository
    storage: StorageClient
