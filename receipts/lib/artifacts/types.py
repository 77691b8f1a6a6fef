from __future__ import annotations

from pydantic import BaseModel, Field

# Receipt template layout. Coordinates are PDF points with the origin at the
# bottom-left corner of the page, the convention template authors measure in.


class TextAnchor(BaseModel):
    x: float
    y: float


class TemplateLayout(BaseModel):
    # Zero-based page index; clamped to the template's last page when rendering.
    page: int = Field(default=0, ge=0)
    # Left edge of the donor name.
    name: TextAnchor = Field(default_factory=lambda: TextAnchor(x=152, y=650))
    # Right edges of the numeric and date fields.
    year: TextAnchor = Field(default_factory=lambda: TextAnchor(x=450, y=650))
    amount: TextAnchor = Field(default_factory=lambda: TextAnchor(x=410, y=548))
    date: TextAnchor = Field(default_factory=lambda: TextAnchor(x=450, y=520))
    font_size: float = Field(default=12, gt=0)
    schema_version: str = Field(default="layout:v1")
