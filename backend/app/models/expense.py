"""ExpenseRecord — costs recorded by an account (always considered paid).

Kept in its own table; merged with invoices/quotes into one document
stream on read.  Keyed by (user_id, id) like invoices.
"""

from datetime import datetime

from sqlalchemy import DateTime, Float, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class ExpenseRecord(Base):
    __tablename__ = "expenses"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True, index=True)
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    provider_name: Mapped[str | None] = mapped_column(Text)
    date: Mapped[str | None] = mapped_column(Text)
    total: Mapped[float | None] = mapped_column(Float, default=0.0, server_default=text("0"))
    currency: Mapped[str | None] = mapped_column(String(3), default="USD", server_default="USD")
    category: Mapped[str | None] = mapped_column(Text)
    receipt_url: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str | None] = mapped_column(String(30), default="Paid", server_default="Paid")
    sync_state: Mapped[str | None] = mapped_column(String(20), default="Synced", server_default="Synced")
    data: Mapped[dict | None] = mapped_column(JSONType, default=dict, server_default=text("'{}'"))
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
