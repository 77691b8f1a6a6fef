from __future__ import annotations

import logging
from dataclasses import dataclass, field

import fitz

from receipts.domain.artifacts import FONT_KEY, TEMPLATE_KEY
from receipts.domain.contracts import ReceiptRenderer, StorageClient
from receipts.domain.errors import GenerationDependencyError
from receipts.domain.models import ReceiptFields
from receipts.lib.artifacts.types import TemplateLayout

logger = logging.getLogger("runtime")

EMBEDDED_FONT_NAME = "receiptfont"
TEXT_COLOR = (0, 0, 0)


@dataclass(frozen=True)
class TemplateAssets:
    template_pdf: bytes
    font_bytes: bytes
    layout: TemplateLayout


@dataclass
class TemplateCache:
    """Process-scoped holder of the receipt template and font.

    Assets are fetched from storage on first use and then kept for the life of
    the process. A failed load is not cached, so a later invocation retries it.
    """

    storage: StorageClient
    layout: TemplateLayout = field(default_factory=TemplateLayout)
    template_key: str = TEMPLATE_KEY
    font_key: str = FONT_KEY
    _assets: TemplateAssets | None = field(default=None, init=False, repr=False)

    @property
    def loaded(self) -> bool:
        return self._assets is not None

    def get(self) -> TemplateAssets:
        if self._assets is None:
            self._assets = TemplateAssets(
                template_pdf=self._fetch(self.template_key, what="template"),
                font_bytes=self._fetch(self.font_key, what="font"),
                layout=self.layout,
            )
            logger.info(
                "receipt template loaded",
                extra={"template_key": self.template_key, "font_key": self.font_key},
            )
        return self._assets

    def _fetch(self, key: str, *, what: str) -> bytes:
        try:
            payload = self.storage.get_bytes(key=key)
        except KeyError as exc:
            raise GenerationDependencyError(f"receipt {what} is not found: {key}") from exc
        if not payload:
            raise GenerationDependencyError(f"receipt {what} is empty: {key}")
        return payload


@dataclass(frozen=True)
class PdfReceiptRenderer(ReceiptRenderer):
    cache: TemplateCache

    def render(self, fields: ReceiptFields) -> bytes:
        assets = self.cache.get()
        layout = assets.layout
        try:
            document = fitz.open(stream=assets.template_pdf, filetype="pdf")
            font = fitz.Font(fontbuffer=assets.font_bytes)
        except (RuntimeError, ValueError) as exc:
            raise GenerationDependencyError(f"receipt template or font cannot be opened: {exc}") from exc

        try:
            if document.page_count == 0:
                raise GenerationDependencyError("receipt template has no pages")
            page = document[min(layout.page, document.page_count - 1)]
            page.insert_font(fontname=EMBEDDED_FONT_NAME, fontbuffer=assets.font_bytes)
            height = page.rect.height
            size = layout.font_size

            page.insert_text(
                fitz.Point(layout.name.x, height - layout.name.y),
                fields.name,
                fontsize=size,
                fontname=EMBEDDED_FONT_NAME,
                color=TEXT_COLOR,
            )
            for anchor, text in (
                (layout.year, str(fields.period)),
                (layout.amount, fields.amount),
                (layout.date, fields.issue_date),
            ):
                width = font.text_length(text, fontsize=size)
                page.insert_text(
                    fitz.Point(anchor.x - width, height - anchor.y),
                    text,
                    fontsize=size,
                    fontname=EMBEDDED_FONT_NAME,
                    color=TEXT_COLOR,
                )
            return document.tobytes(garbage=3, deflate=True)
        finally:
            document.close()
