"""Pydantic schemas for catalog items."""

import uuid

from pydantic import BaseModel, Field


class CatalogItemIn(BaseModel):
    id: str = Field(default_factory=lambda: f"cat_{uuid.uuid4().hex[:12]}")
    name: str = Field(..., min_length=1, max_length=255)
    price: float = Field(..., ge=0)
    description: str | None = None
    sku: str | None = None
    is_recurring: bool = False


class CatalogItemOut(BaseModel):
    id: str
    name: str
    price: float
    description: str | None = None
    sku: str | None = None
    is_recurring: bool = False

    model_config = {"from_attributes": True}
