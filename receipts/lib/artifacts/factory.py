from __future__ import annotations

import os
from pathlib import Path

from receipts.domain.contracts import ArtifactRepository, ReceiptRenderer, StorageClient
from receipts.lib.artifacts.codecs import decode_layout
from receipts.lib.artifacts.rendering import PdfReceiptRenderer, TemplateCache
from receipts.lib.artifacts.repository import StorageArtifactRepository
from receipts.lib.artifacts.types import TemplateLayout


def build_artifact_repository(*, storage: StorageClient) -> ArtifactRepository:
    return StorageArtifactRepository(storage=storage)


def load_template_layout(path: str | None = None) -> TemplateLayout:
    layout_path = path or os.getenv("RECEIPT_TEMPLATE_LAYOUT_PATH")
    if not layout_path:
        return TemplateLayout()
    return decode_layout(Path(layout_path).read_text(encoding="utf-8"))


def build_receipt_renderer(
    *,
    storage: StorageClient,
    layout: TemplateLayout | None = None,
) -> ReceiptRenderer:
    cache = TemplateCache(storage=storage, layout=layout or load_template_layout())
    return PdfReceiptRenderer(cache=cache)
