"""
Marketplace and marketplace field schemas.

A marketplace is a target schema; its fields are ordered column
definitions, optionally grouped by a category tag.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from models.base import BaseSchema, TimestampMixin

# Sentinel label for fields without a category
DEFAULT_CATEGORY = "Default"


def is_default_category(category: Optional[str]) -> bool:
    """True when the category means "no category" (null, blank or Default)."""
    return category is None or not category.strip() or category.strip() == DEFAULT_CATEGORY


def normalize_category(category: Optional[str]) -> Optional[str]:
    """
    Storage form of a category tag.

    "Default", blank and None all map to None.
    """
    if is_default_category(category):
        return None
    return category.strip()


class MarketplaceCreate(BaseSchema):
    """
    Create a new marketplace.

    The name is normalized to lowercase with whitespace replaced by "_".
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Machine name",
        examples=["amazon", "mercado libre"]
    )
    display_name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Name shown to users",
        examples=["Amazon", "Mercado Libre"]
    )

    @field_validator("name")
    @classmethod
    def name_slug(cls, v: str) -> str:
        return re.sub(r"\s+", "_", v.strip().lower())


class MarketplaceResponse(BaseSchema):
    """Marketplace with all fields."""

    id: str = Field(..., description="Marketplace UUID")
    name: str
    display_name: str
    template_file_path: Optional[str] = None
    created_at: Optional[datetime] = None


class MarketplaceListResponse(BaseSchema):
    """List of marketplaces."""

    data: list[MarketplaceResponse]
    total: int


class MarketplaceFieldResponse(BaseSchema):
    """
    One column definition of a marketplace schema.

    field_order defines output column order; fields without an order
    sort last.
    """

    id: str = Field(..., description="Field UUID")
    marketplace_id: str
    field_name: str
    display_name: Optional[str] = None
    is_required: bool = False
    description: Optional[str] = None
    sample_values: list[str] = Field(default_factory=list)
    field_order: Optional[int] = None
    category: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("sample_values", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class MarketplaceFieldListResponse(BaseSchema):
    """List of fields for one marketplace."""

    data: list[MarketplaceFieldResponse]
    total: int


class MarketplaceFieldUpdate(BaseSchema):
    """
    Partial update for one field.

    is_required is always sent; the rest only when changed.
    """

    id: str
    is_required: bool
    description: Optional[str] = None
    display_name: Optional[str] = None
    field_order: Optional[int] = Field(None, ge=0)


class MarketplaceFieldBulkUpdate(BaseSchema):
    """Batch of field updates."""

    fields: list[MarketplaceFieldUpdate]


class FieldBulkUpdateResponse(BaseSchema):
    success: bool
    updated: int


class TemplateExtractionResponse(BaseSchema):
    """Fields created from an uploaded template."""

    fields: list[MarketplaceFieldResponse]
    column_count: int


class FieldsSummaryItem(BaseSchema):
    count: int = 0
    categories: list[str] = Field(default_factory=list)


class FieldsSummaryResponse(BaseSchema):
    """Field count and categories per marketplace id."""

    summary: dict[str, FieldsSummaryItem]
