"""Document number allocation.

Codes look like ``{prefix}-{seq:4}``:

  invoice:  FAC-0007
  quote:    COT-0003
  expense:  EXP-0012

Drafts never consume a number; they carry a provisional ``DRAFT-xxxxxxxx``
id until they are finalized.

``allocate`` is the pure part: given the counter value and a snapshot of
existing ids, it returns the first free code.  Reserving the counter value
atomically is the persistence gateway's job (``reserve_number``).
"""

import uuid
from typing import Iterable

from app.schemas.document import DocumentType

DEFAULT_PREFIXES = {
    DocumentType.INVOICE: "FAC",
    DocumentType.QUOTE: "COT",
    DocumentType.EXPENSE: "EXP",
}

SEQ_WIDTH = 4
DRAFT_PREFIX = "DRAFT-"


def format_code(prefix: str, number: int, width: int = SEQ_WIDTH) -> str:
    """Build ``PREFIX-000N``."""
    return f"{prefix}-{number:0{width}d}"


def allocate(
    doc_type: DocumentType,
    prefix: str | None,
    next_number: int,
    existing_ids: Iterable[str],
) -> tuple[str, int]:
    """Return the first non-colliding code at or after ``next_number``.

    Args:
        doc_type: Document type, used for the default prefix
        prefix: Sequence prefix (falls back to the type default)
        next_number: Counter value to start from
        existing_ids: Snapshot of ids already in use for the account

    Returns:
        (code, number), e.g. ("FAC-0003", 3)
    """
    prefix = prefix or DEFAULT_PREFIXES[doc_type]
    taken = set(existing_ids)
    number = max(next_number, 1)
    candidate = format_code(prefix, number)
    while candidate in taken:
        number += 1
        candidate = format_code(prefix, number)
    return candidate, number


def new_draft_id() -> str:
    return f"{DRAFT_PREFIX}{uuid.uuid4().hex[:8].upper()}"


def is_draft_id(doc_id: str | None) -> bool:
    return bool(doc_id) and doc_id.startswith(DRAFT_PREFIX)
