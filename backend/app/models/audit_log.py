"""AuditLog — immutable trail of persistence actions per account.

Records which account did what to which document.  ``details`` holds a
redacted summary of the payload (no contact data).
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    # ── What ───────────────────────────────────────────────────
    # document_saved | document_deleted | client_saved |
    # catalog_item_saved | catalog_item_deleted
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(Text)

    # ── Context ────────────────────────────────────────────────
    details: Mapped[dict | None] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )
