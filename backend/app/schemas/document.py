"""Pydantic schemas for invoices, quotes and expenses.

A ``Document`` is both the API shape and the JSON snapshot persisted in
the ``data`` column.  ``schema_version`` tags the snapshot layout so that
``extension_data`` (fields the typed model does not know yet) can evolve
without an open-ended merge into the top level.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from app.services.totals import compute

SNAPSHOT_SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _token() -> str:
    return uuid.uuid4().hex[:12]


# ── Enums ───────────────────────────────────────────────────

class DocumentType(str, Enum):
    INVOICE = "Invoice"
    QUOTE = "Quote"
    EXPENSE = "Expense"


class DocumentStatus(str, Enum):
    DRAFT = "Draft"
    CREATED = "Created"
    NEGOTIATION = "Negotiation"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    PARTIALLY_PAID = "PartiallyPaid"
    PAID = "Paid"
    UNCOLLECTIBLE = "Uncollectible"


class SyncState(str, Enum):
    SYNCED = "Synced"
    PENDING_SYNC = "PendingSync"
    FAILED = "Failed"


class DiscountKind(str, Enum):
    PERCENT = "PERCENT"
    AMOUNT = "AMOUNT"


class TimelineEventType(str, Enum):
    CREATED = "CREATED"
    SENT = "SENT"
    OPENED = "OPENED"
    CLICKED = "CLICKED"
    APPROVED = "APPROVED"
    NEGOTIATION = "NEGOTIATION"
    REJECTED = "REJECTED"
    PARTIAL_PAYMENT = "PARTIAL_PAYMENT"
    PAID = "PAID"
    UNCOLLECTIBLE = "UNCOLLECTIBLE"
    REMINDER = "REMINDER"
    CONVERTED = "CONVERTED"


# ── Building blocks ─────────────────────────────────────────

class LineItem(BaseModel):
    id: str = Field(default_factory=_token)
    description: str = ""
    details: str | None = None
    quantity: float = Field(1, gt=0)
    price: float = Field(0, ge=0)
    tax_rate: float = Field(0, ge=0, le=100)

    @property
    def line_total(self) -> float:
        return self.quantity * self.price


class Discount(BaseModel):
    kind: DiscountKind = DiscountKind.PERCENT
    value: float = Field(0, ge=0)

    @model_validator(mode="after")
    def percent_in_range(self):
        if self.kind == DiscountKind.PERCENT and self.value > 100:
            raise ValueError("Percent discount must be between 0 and 100")
        return self


class TimelineEvent(BaseModel):
    id: str = Field(default_factory=_token)
    type: TimelineEventType
    title: str
    description: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)


class Totals(BaseModel):
    subtotal: float
    discount_amount: float
    tax_amount: float
    total: float
    effective_discount_rate: float


# ── Document ────────────────────────────────────────────────

class Document(BaseModel):
    id: str | None = None
    user_id: str | None = None
    type: DocumentType = DocumentType.INVOICE

    # Client snapshot; edits to the client profile never touch this
    client_name: str = ""
    client_tax_id: str | None = None
    client_email: str | None = None
    client_address: str | None = None

    items: list[LineItem] = []
    discount: Discount | None = None
    discount_rate: float = 0.0  # effective percent actually applied
    total: float = 0.0
    amount_paid: float = 0.0
    currency: str = Field("USD", min_length=3, max_length=3)

    status: DocumentStatus = DocumentStatus.DRAFT
    sync_state: SyncState = SyncState.SYNCED
    date: datetime = Field(default_factory=_utcnow)
    notes: str | None = None
    timeline: list[TimelineEvent] = []

    # Expenses
    receipt_url: str | None = None
    category: str | None = None

    # Quotes
    success_probability: int | None = Field(None, ge=0, le=100)

    extension_data: dict = {}
    schema_version: int = SNAPSHOT_SCHEMA_VERSION

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("date")
    @classmethod
    def date_in_utc(cls, v: datetime) -> datetime:
        # Rows written by older builds carry naive dates
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    @computed_field
    @property
    def totals_consistent(self) -> bool:
        """Whether the stored total still matches the items and discount."""
        return abs(compute(self.items, self.discount).total - self.total) < 0.01

    @property
    def is_draft(self) -> bool:
        return self.status == DocumentStatus.DRAFT


# ── Request bodies ──────────────────────────────────────────

class DocumentDraft(BaseModel):
    """Wizard content.  Totals are always derived server-side."""
    type: DocumentType = DocumentType.INVOICE
    client_name: str = ""
    client_tax_id: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    items: list[LineItem] = []
    discount: Discount | None = None
    currency: str | None = None
    notes: str | None = None
    date: datetime | None = None
    receipt_url: str | None = None
    category: str | None = None
    extension_data: dict = {}


class DocumentUpdate(BaseModel):
    client_name: str | None = None
    client_tax_id: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    items: list[LineItem] | None = None
    discount: Discount | None = None
    currency: str | None = None
    notes: str | None = None
    extension_data: dict | None = None


class FinalizeRequest(DocumentDraft):
    draft_id: str | None = None


class PreviewRequest(BaseModel):
    items: list[LineItem] = []
    discount: Discount | None = None


class StatusChange(BaseModel):
    status: DocumentStatus
    note: str | None = None


class PaymentIn(BaseModel):
    amount: float

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Amount must be positive")
        return v


class SyncReport(BaseModel):
    synced: list[str]
    still_pending: list[str]
    failed: list[str]


class ConversionResult(BaseModel):
    quote: Document
    invoice: Document


class SequenceConfig(BaseModel):
    prefix: str = Field(..., min_length=1, max_length=20, pattern=r"^[A-Za-z0-9]+$")
    next_number: int = Field(1, ge=1)
