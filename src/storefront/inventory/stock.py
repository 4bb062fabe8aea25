"""StockItem aggregate: the sellable stock level of one product or variant.

The aggregate's identity is its stock key, ``<product_id>`` or
``<product_id>/<variant_id>``, so a level is looked up directly without a
query. ``quantity`` is what can still be sold. It is only ever lowered through
``reserve``, which refuses to go below zero.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer

from storefront.domain import storefront
from storefront.errors import InsufficientStock
from storefront.inventory.events import (
    StockAdjusted,
    StockReceived,
    StockReleased,
    StockReserved,
)


def stock_key(product_id, variant_id=None) -> str:
    if variant_id:
        return f"{product_id}/{variant_id}"
    return str(product_id)


@storefront.aggregate
class StockItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(default=0, min_value=0)
    updated_at = DateTime()

    @classmethod
    def create(cls, product_id, variant_id=None, quantity=0):
        return cls(
            id=stock_key(product_id, variant_id),
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            updated_at=datetime.now(UTC),
        )

    @property
    def key(self) -> str:
        return str(self.id)

    def receive(self, quantity: int) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = datetime.now(UTC)
        self.quantity += quantity
        self.updated_at = now

        self.raise_(
            StockReceived(
                stock_key=self.key,
                product_id=str(self.product_id),
                variant_id=str(self.variant_id) if self.variant_id else None,
                quantity=quantity,
                new_level=self.quantity,
                received_at=now,
            )
        )

    def adjust(self, new_level: int, reason: str) -> None:
        if new_level < 0:
            raise ValidationError({"quantity": ["Stock level cannot be negative"]})

        now = datetime.now(UTC)
        previous = self.quantity
        self.quantity = new_level
        self.updated_at = now

        self.raise_(
            StockAdjusted(
                stock_key=self.key,
                previous_level=previous,
                new_level=new_level,
                reason=reason,
                adjusted_at=now,
            )
        )

    def reserve(self, quantity: int, reference: str | None = None) -> None:
        """Decrement stock by ``quantity`` only if that much is available."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if self.quantity < quantity:
            raise InsufficientStock(self.key, self.quantity, quantity)

        now = datetime.now(UTC)
        self.quantity -= quantity
        self.updated_at = now

        self.raise_(
            StockReserved(
                stock_key=self.key,
                quantity=quantity,
                new_level=self.quantity,
                reference=reference,
                reserved_at=now,
            )
        )

    def release(self, quantity: int, reference: str | None = None) -> None:
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        now = datetime.now(UTC)
        self.quantity += quantity
        self.updated_at = now

        self.raise_(
            StockReleased(
                stock_key=self.key,
                quantity=quantity,
                new_level=self.quantity,
                reference=reference,
                released_at=now,
            )
        )
