"""In-process catalog, seeded explicitly.

Used in development and tests, and as the default when no remote catalog is
configured.
"""

from dataclasses import replace

from storefront.catalog.port import CatalogPort, ProductSnapshot


def _key(product_id, variant_id) -> tuple[str, str | None]:
    return str(product_id), str(variant_id) if variant_id else None


class InMemoryCatalog(CatalogPort):
    def __init__(self) -> None:
        self._products: dict[tuple[str, str | None], ProductSnapshot] = {}
        self.lookups: list[tuple[str, str | None]] = []

    def register(
        self,
        product_id: str,
        name: str,
        price: float,
        sku: str | None = None,
        variant_id: str | None = None,
        status: str = "active",
        category_ids: tuple[str, ...] | list[str] = (),
    ) -> ProductSnapshot:
        product_id, variant_id = _key(product_id, variant_id)
        snapshot = ProductSnapshot(
            product_id=product_id,
            variant_id=variant_id,
            name=name,
            sku=sku or f"SKU-{product_id}",
            price=price,
            status=status,
            category_ids=tuple(category_ids),
        )
        self._products[(product_id, variant_id)] = snapshot
        return snapshot

    def update_price(self, product_id: str, price: float, variant_id: str | None = None) -> None:
        key = _key(product_id, variant_id)
        self._products[key] = replace(self._products[key], price=price)

    def set_status(self, product_id: str, status: str, variant_id: str | None = None) -> None:
        key = _key(product_id, variant_id)
        self._products[key] = replace(self._products[key], status=status)

    def get_product(self, product_id: str, variant_id: str | None = None) -> ProductSnapshot | None:
        key = _key(product_id, variant_id)
        self.lookups.append(key)
        return self._products.get(key)
