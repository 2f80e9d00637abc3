from __future__ import annotations

from .base import Base
from .products import (
    DEFAULT_PRODUCT_STATUS,
    PRODUCT_STATUSES,
    Product,
    ProductStatus,
)

__all__ = [
    "Base",
    "DEFAULT_PRODUCT_STATUS",
    "PRODUCT_STATUSES",
    "Product",
    "ProductStatus",
]
