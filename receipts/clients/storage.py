from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from receipts.domain.contracts import STORAGE_PREFIXES


@dataclass(frozen=True)
class FilesystemStorageClient:
    """Object storage rooted at a local directory; keys map to relative paths."""

    root: Path

    def put_bytes(self, *, key: str, payload: bytes) -> str:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
        return f"file://{key}"

    def get_bytes(self, *, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(f"storage key not found: {key}")
        return path.read_bytes()

    def _path_for(self, key: str) -> Path:
        if not any(key.startswith(prefix) for prefix in STORAGE_PREFIXES):
            raise ValueError("storage key must start with an allowed prefix")
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"storage key escapes the storage root: {key}")
        return path
