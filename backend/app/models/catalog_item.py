"""CatalogItem — reusable product/service line for the invoice wizard."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    user_id: Mapped[str] = mapped_column(Text, primary_key=True, index=True)
    id: Mapped[str] = mapped_column(Text, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    sku: Mapped[str | None] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
