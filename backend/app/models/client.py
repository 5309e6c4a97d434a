"""Client registry — customers (invoiced) and prospects (quoted only).

Two tables with the same shape.  A prospect is promoted to a client the
first time an invoice is issued to them; a client is never downgraded.
Tags and notes are stored as delimited strings.  Rows are keyed by
(user_id, id), so an id sent by one account never reaches another's row.
"""

from datetime import datetime

from sqlalchemy import DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class _ContactColumns:
    user_id: Mapped[str] = mapped_column(Text, primary_key=True, index=True)
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    tax_id: Mapped[str | None] = mapped_column(Text)
    email: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    tags: Mapped[str | None] = mapped_column(Text)  # "vip,retainer"
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=func.now()
    )


class ClientRecord(_ContactColumns, Base):
    __tablename__ = "clients"


class ProspectRecord(_ContactColumns, Base):
    __tablename__ = "prospects"
