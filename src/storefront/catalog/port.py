"""Catalog port: the live product data checkout re-reads at commit time.

The catalog itself (category trees, product pages, search) belongs to another
service. Checkout only needs the current price, name, sku and sale status of a
product or variant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProductSnapshot:
    product_id: str
    name: str
    sku: str
    price: float
    status: str = "active"
    variant_id: str | None = None
    category_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_available(self) -> bool:
        return self.status == "active"


class CatalogPort(ABC):
    """Abstract catalog lookup."""

    @abstractmethod
    def get_product(self, product_id: str, variant_id: str | None = None) -> ProductSnapshot | None:
        """Return the live product (or variant) snapshot, or None if it does not exist."""
        ...
