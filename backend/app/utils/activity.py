"""Lightweight helper for recording audit log entries.

Usage:
    log_activity(
        session, account_id,
        action="document_saved", entity_type="Invoice",
        entity_id=doc.id, details=document_summary(doc),
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditLog
from app.schemas.document import Document

# Never copied into audit details
REDACTED_KEYS = frozenset({
    "client_tax_id", "client_email", "client_address", "email", "phone",
    "address", "tax_id", "notes", "receipt_url",
})


def redact(payload: dict) -> dict:
    """Drop contact data from a payload before it is written to the audit log."""
    return {
        key: ("[redacted]" if key in REDACTED_KEYS else value)
        for key, value in payload.items()
        if not isinstance(value, (dict, list))
    }


def document_summary(document: Document) -> dict:
    """Redacted summary of a document: amounts and state, no contact data."""
    return {
        "type": document.type.value,
        "status": document.status.value,
        "sync_state": document.sync_state.value,
        "total": round(document.total, 2),
        "currency": document.currency,
        "item_count": len(document.items),
    }


def log_activity(
    db: AsyncSession,
    account_id: str,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an audit log entry to the current DB session."""
    entry = AuditLog(
        user_id=account_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
    )
    db.add(entry)
