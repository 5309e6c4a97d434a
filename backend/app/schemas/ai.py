"""Pydantic schemas for the AI assistant endpoints."""

from datetime import date as date_type
from typing import Literal

from pydantic import BaseModel, Field

from app.schemas.document import DocumentType


class ParseRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=4000)


class ParsedInvoiceRequest(BaseModel):
    """Structured reading of a free-text request like "bill Acme 500 for design"."""
    client_name: str
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    concept: str
    detected_type: DocumentType = DocumentType.INVOICE


class DiscountRequest(BaseModel):
    amount: float = Field(..., ge=0)
    client_name: str


class DiscountRecommendation(BaseModel):
    recommended_rate: float = Field(..., ge=0, le=100)
    reasoning: str


class CatalogSuggestionRequest(BaseModel):
    business_description: str = Field(..., min_length=1, max_length=2000)


class EnhanceRequest(BaseModel):
    name: str
    description: str
    format: Literal["paragraph", "bullets"] = "paragraph"


class EnhanceResult(BaseModel):
    description: str


class PriceAnalysisRequest(BaseModel):
    item_name: str = Field(..., min_length=1, max_length=255)
    country: str = Field("Panama", min_length=2, max_length=100)


class PriceAnalysis(BaseModel):
    """Estimated market price range for a product or service."""
    min_price: float = Field(..., ge=0)
    max_price: float = Field(..., ge=0)
    avg_price: float = Field(..., ge=0)
    currency: str = "USD"
    reasoning: str


class ReceiptImage(BaseModel):
    """A photographed receipt, base64-encoded."""
    image_base64: str = Field(..., min_length=1, max_length=14_000_000)
    mime_type: Literal["image/jpeg", "image/png", "image/webp"] = "image/jpeg"


class ParsedReceipt(BaseModel):
    provider_name: str
    amount: float = Field(..., ge=0)
    currency: str = "USD"
    date: date_type | None = None
    concept: str
