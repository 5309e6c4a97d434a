"""Document lifecycle — status transitions, timeline, payments, sync state.

Transition table (any pair not listed is rejected):

    Draft          → Created
    Created        → Negotiation | Accepted | Rejected | PartiallyPaid | Paid | Uncollectible
    Negotiation    → Accepted | Rejected
    Accepted       → PartiallyPaid | Paid | Uncollectible
    PartiallyPaid  → Paid | Uncollectible
    Paid / Rejected / Uncollectible are terminal.

On top of the table, each document type only visits its own states:
quotes never enter the payment states, invoices never negotiate or get
rejected, and expenses are born Paid.

Offline handling is orthogonal to status: ``sync_state`` records whether
the last write reached the store, so the intended status is never lost.

All functions return updated copies and never mutate their input.
"""

import logging
from datetime import datetime, timezone

from app.middleware.exceptions import BusinessLogicError, InvalidTransitionError
from app.schemas.document import (
    Document,
    DocumentStatus,
    DocumentType,
    SyncState,
    TimelineEvent,
    TimelineEventType,
)
from app.utils.locks import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

S = DocumentStatus

ALLOWED_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    S.DRAFT: frozenset({S.CREATED}),
    S.CREATED: frozenset({
        S.NEGOTIATION, S.ACCEPTED, S.REJECTED,
        S.PARTIALLY_PAID, S.PAID, S.UNCOLLECTIBLE,
    }),
    S.NEGOTIATION: frozenset({S.ACCEPTED, S.REJECTED}),
    S.ACCEPTED: frozenset({S.PARTIALLY_PAID, S.PAID, S.UNCOLLECTIBLE}),
    S.PARTIALLY_PAID: frozenset({S.PAID, S.UNCOLLECTIBLE}),
    S.PAID: frozenset(),
    S.REJECTED: frozenset(),
    S.UNCOLLECTIBLE: frozenset(),
}

TYPE_STATUSES: dict[DocumentType, frozenset[DocumentStatus]] = {
    DocumentType.INVOICE: frozenset({
        S.DRAFT, S.CREATED, S.ACCEPTED, S.PARTIALLY_PAID, S.PAID, S.UNCOLLECTIBLE,
    }),
    DocumentType.QUOTE: frozenset({
        S.DRAFT, S.CREATED, S.NEGOTIATION, S.ACCEPTED, S.REJECTED,
    }),
    DocumentType.EXPENSE: frozenset({S.PAID}),
}

# Event appended when a document enters a status
STATUS_EVENTS: dict[DocumentStatus, tuple[TimelineEventType, str]] = {
    S.CREATED: (TimelineEventType.SENT, "Document issued"),
    S.NEGOTIATION: (TimelineEventType.NEGOTIATION, "In negotiation"),
    S.ACCEPTED: (TimelineEventType.APPROVED, "Accepted by client"),
    S.REJECTED: (TimelineEventType.REJECTED, "Rejected by client"),
    S.PARTIALLY_PAID: (TimelineEventType.PARTIAL_PAYMENT, "Partial payment recorded"),
    S.PAID: (TimelineEventType.PAID, "Payment recorded"),
    S.UNCOLLECTIBLE: (TimelineEventType.UNCOLLECTIBLE, "Marked uncollectible"),
}

# Labels written by earlier versions of the app
LEGACY_STATUS_ALIASES: dict[str, DocumentStatus] = {
    "Borrador": S.DRAFT,
    "Creada": S.CREATED,
    "Enviada": S.CREATED,
    "Sent": S.CREATED,
    "Viewed": S.CREATED,
    "Seguimiento": S.CREATED,
    "Negociacion": S.NEGOTIATION,
    "Aceptada": S.ACCEPTED,
    "Rechazada": S.REJECTED,
    "Abonada": S.PARTIALLY_PAID,
    "Pagada": S.PAID,
    "Incobrable": S.UNCOLLECTIBLE,
}

PAYMENT_TOLERANCE = 0.01


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Queries ─────────────────────────────────────────────────

def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    doc_type: DocumentType,
    current: DocumentStatus,
    target: DocumentStatus,
) -> bool:
    if target not in TYPE_STATUSES[doc_type]:
        return False
    return target in ALLOWED_TRANSITIONS[current]


def initial_status(doc_type: DocumentType, as_draft: bool) -> DocumentStatus:
    """Status on first save: Draft when saved as draft, else Created."""
    if doc_type == DocumentType.EXPENSE:
        return S.PAID
    return S.DRAFT if as_draft else S.CREATED


def normalise_status(raw: str | None) -> tuple[DocumentStatus, SyncState | None]:
    """Map a stored status string onto (status, sync override).

    Old rows stored ``PendingSync`` in place of the real status; that
    status is unrecoverable, so such rows come back as Created + PendingSync.
    """
    if raw == SyncState.PENDING_SYNC.value:
        return S.CREATED, SyncState.PENDING_SYNC
    try:
        return DocumentStatus(raw), None
    except ValueError:
        pass
    if raw in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[raw], None
    logger.warning("Unknown document status %r, treating as Draft", raw)
    return S.DRAFT, None


# ── Timeline ────────────────────────────────────────────────

def append_event(
    document: Document,
    event_type: TimelineEventType,
    title: str,
    description: str | None = None,
    at: datetime | None = None,
) -> Document:
    """Return a copy with one event appended; earlier events are untouched."""
    event = TimelineEvent(
        type=event_type,
        title=title,
        description=description,
        timestamp=at or _now(),
    )
    return document.model_copy(update={"timeline": [*document.timeline, event]})


def start_timeline(document: Document, description: str | None = None) -> Document:
    """Append the CREATED event for a newly issued document."""
    title = {
        DocumentType.INVOICE: "Invoice created",
        DocumentType.QUOTE: "Quote created",
        DocumentType.EXPENSE: "Expense recorded",
    }[document.type]
    return append_event(document, TimelineEventType.CREATED, title, description)


# ── Transitions ─────────────────────────────────────────────

def transition(
    document: Document,
    target: DocumentStatus,
    note: str | None = None,
) -> Document:
    """Move a document to ``target`` and record the event.

    Raises:
        InvalidTransitionError: pair not in the transition table for this type
    """
    if not can_transition(document.type, document.status, target):
        raise InvalidTransitionError(
            document.status.value, target.value, document.type.value
        )

    event_type, title = STATUS_EVENTS[target]
    updated = document.model_copy(update={"status": target})
    return append_event(updated, event_type, title, note)


def record_payment(document: Document, amount: float) -> Document:
    """Add a payment to ``amount_paid`` and move to PartiallyPaid or Paid.

    Raises:
        BusinessLogicError: not an invoice, or the invoice is settled/closed
    """
    if document.type != DocumentType.INVOICE:
        raise BusinessLogicError(
            f"Payments can only be recorded on invoices, not {document.type.value}",
            error_code="PAYMENT_NOT_ALLOWED",
        )
    if document.status == S.DRAFT or is_terminal(document.status):
        raise BusinessLogicError(
            f"Cannot record a payment on a {document.status.value} invoice",
            error_code="PAYMENT_NOT_ALLOWED",
        )

    paid = document.amount_paid + amount
    fully_paid = paid >= document.total - PAYMENT_TOLERANCE
    target = S.PAID if fully_paid else S.PARTIALLY_PAID
    description = f"{document.currency} {amount:.2f} received ({paid:.2f} of {document.total:.2f})"

    updated = document.model_copy(update={"amount_paid": paid})
    if target == updated.status:
        # Another partial payment: no status change, still one event
        return append_event(
            updated, TimelineEventType.PARTIAL_PAYMENT, "Partial payment recorded", description
        )
    return transition(updated, target, description)


# ── Sync state ──────────────────────────────────────────────

def with_sync_state(document: Document, state: SyncState) -> Document:
    return document.model_copy(update={"sync_state": state})
