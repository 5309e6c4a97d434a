"""DocumentSequence — per-account numbering counter for each document type.

One row per (user_id, doc_type).  ``next_number`` is the number the next
reservation hands out; reservations increment it atomically.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class DocumentSequence(Base):
    __tablename__ = "document_sequences"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
    doc_type: Mapped[str] = mapped_column(String(20), primary_key=True)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    next_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
