"""Domain events for the StockItem aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="StockItem")
class StockReceived:
    """Stock was added to a product or variant."""

    __version__ = 1

    stock_key = String(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)
    new_level = Integer(required=True)
    received_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class StockAdjusted:
    """Stock level was set to an absolute value after a count."""

    __version__ = 1

    stock_key = String(required=True)
    previous_level = Integer(required=True)
    new_level = Integer(required=True)
    reason = String(required=True)
    adjusted_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class StockReserved:
    """Stock was conditionally decremented for an order."""

    __version__ = 1

    stock_key = String(required=True)
    quantity = Integer(required=True)
    new_level = Integer(required=True)
    reference = String()
    reserved_at = DateTime(required=True)


@storefront.event(part_of="StockItem")
class StockReleased:
    """Reserved stock was returned, e.g. on cancellation."""

    __version__ = 1

    stock_key = String(required=True)
    quantity = Integer(required=True)
    new_level = Integer(required=True)
    reference = String()
    released_at = DateTime(required=True)
