"""DocumentRecord — invoices and quotes issued by an account.

Stores a handful of normalised columns used for listing/filtering plus a
full JSON snapshot (``data``) of the document for everything else: line
items, discount configuration, timeline, client contact fields and
forward-compatible extension data.

Numbers are allocated per account, so the key is (user_id, id): two
accounts each own their own FAC-0001.

Lifecycle:  Draft → Created → Negotiation | Accepted | Rejected
            → PartiallyPaid → Paid | Uncollectible
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class DocumentRecord(Base):
    __tablename__ = "invoices"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True, index=True)
    # FAC-0007 / COT-0003 / DRAFT-1A2B3C4D
    id: Mapped[str] = mapped_column(Text, primary_key=True)

    # ── Client snapshot (not a foreign key) ──────────────────
    client_name: Mapped[str | None] = mapped_column(Text)
    client_tax_id: Mapped[str | None] = mapped_column(Text)

    # ── Amounts ──────────────────────────────────────────────
    total: Mapped[float | None] = mapped_column(Float, default=0.0, server_default=text("0"))
    currency: Mapped[str | None] = mapped_column(String(3), default="USD", server_default="USD")

    # ── Status ───────────────────────────────────────────────
    # Draft | Created | Negotiation | Accepted | Rejected |
    # PartiallyPaid | Paid | Uncollectible
    status: Mapped[str | None] = mapped_column(
        String(30), default="Draft", server_default="Draft", index=True
    )
    # Synced | PendingSync | Failed
    sync_state: Mapped[str | None] = mapped_column(String(20), default="Synced", server_default="Synced")

    date: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str | None] = mapped_column(String(20), default="Invoice", server_default="Invoice")

    # ── Snapshot ─────────────────────────────────────────────
    data: Mapped[dict | None] = mapped_column(JSONType, default=dict, server_default=text("'{}'"))

    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=func.now()
    )
