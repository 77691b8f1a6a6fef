from __future__ import annotations

from dataclasses import dataclass

from receipts.domain.artifacts import receipt_artifact_key, upload_key
from receipts.domain.contracts import ArtifactRepository, StorageClient
from receipts.lib.artifacts.codecs import decode_source, encode_source


@dataclass(frozen=True)
class StorageArtifactRepository(ArtifactRepository):
    storage: StorageClient

    def save_source(self, *, job_id: str, csv_text: str) -> str:
        key = upload_key(job_id=job_id)
        self.storage.put_bytes(key=key, payload=encode_source(csv_text))
        return key

    def load_source(self, *, source_key: str) -> str:
        return decode_source(self.storage.get_bytes(key=_storage_key_from_ref(source_key)))

    def save_receipt(self, *, member_id: str, period: int, payload: bytes) -> str:
        key = receipt_artifact_key(member_id=member_id, period=period)
        self.storage.put_bytes(key=key, payload=payload)
        # Persist the plain key so lookups do not depend on the storage backend's ref scheme.
        return key

    def load_receipt(self, *, member_id: str, period: int) -> bytes:
        return self.storage.get_bytes(key=receipt_artifact_key(member_id=member_id, period=period))


def _storage_key_from_ref(ref: str) -> str:
    if "://" in ref:
        return ref.split("://", maxsplit=1)[1]
    return ref
