from __future__ import annotations

import uuid
from datetime import datetime
from typing import Final, Literal, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

ProductStatus = Literal["DRAFT", "ACTIVE", "ARCHIVED"]

PRODUCT_STATUSES: Final[tuple[str, ...]] = ("DRAFT", "ACTIVE", "ARCHIVED")
DEFAULT_PRODUCT_STATUS: Final[str] = "DRAFT"


def generate_product_id() -> str:
    return uuid.uuid4().hex


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("sku", name="uq_products_sku"),
        CheckConstraint("price >= 0", name="price_non_negative"),
        Index("ix_products_status", "status"),
        Index("ix_products_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=generate_product_id
    )
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=DEFAULT_PRODUCT_STATUS
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"Product(id={self.id!r}, sku={self.sku!r}, status={self.status!r})"
