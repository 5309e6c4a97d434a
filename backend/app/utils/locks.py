"""Status-based locking — prevent edits to a settled document's content.

Each check function returns a LockInfo describing which fields are locked
and why, without raising exceptions.  The caller decides whether to block
the request based on which fields are being updated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from app.schemas.document import Document, DocumentStatus, DocumentType


# ── Data structures ────────────────────────────────────────────


@dataclass
class FieldLock:
    """A single locked field with reason and unlock instructions."""
    field: str
    reason: str
    blocker_ref: str    # document id
    unlock_hint: str


@dataclass
class LockInfo:
    """Lock state for a document.  Empty locked_fields means nothing locked."""
    locked_fields: dict[str, FieldLock] = field(default_factory=dict)

    def check_update(self, updating_fields: set[str]) -> FieldLock | None:
        """Return the first FieldLock that conflicts, or None."""
        for f in sorted(updating_fields):
            if f in self.locked_fields:
                return self.locked_fields[f]
        return None

    def locked_field_names(self) -> list[str]:
        return list(self.locked_fields.keys())


def _add_locks(
    info: LockInfo,
    field_names: list[str],
    reason: str,
    blocker_ref: str,
    unlock_hint: str,
) -> None:
    for name in field_names:
        info.locked_fields[name] = FieldLock(
            field=name,
            reason=f"Cannot edit {name}: {reason}",
            blocker_ref=blocker_ref,
            unlock_hint=unlock_hint,
        )


TERMINAL_STATUSES = frozenset({
    DocumentStatus.PAID,
    DocumentStatus.REJECTED,
    DocumentStatus.UNCOLLECTIBLE,
})

CONTENT_FIELDS = [
    "client_name", "client_tax_id", "client_email", "client_address",
    "items", "discount", "currency", "type",
]

# Once money has been collected the amounts are frozen, even before Paid
PAYMENT_FIELDS = ["items", "discount", "currency"]


def get_document_locks(document: Document) -> LockInfo:
    """Fields that may no longer change given the document's status."""
    info = LockInfo()
    ref = document.id or "draft"

    if document.type == DocumentType.EXPENSE:
        return info

    if document.status in TERMINAL_STATUSES:
        _add_locks(
            info,
            CONTENT_FIELDS,
            reason=f"{document.type.value} {ref} is {document.status.value}",
            blocker_ref=ref,
            unlock_hint="Issue a new document instead.",
        )
        return info

    if document.status == DocumentStatus.PARTIALLY_PAID or document.amount_paid > 0:
        _add_locks(
            info,
            PAYMENT_FIELDS,
            reason=f"payments totalling {document.amount_paid:.2f} recorded on {ref}",
            blocker_ref=ref,
            unlock_hint="Settle or write off the outstanding balance first.",
        )
    return info
