"""Domain events for the Shipment aggregate."""

from protean.fields import DateTime, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Shipment")
class ShipmentCreated:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    order_number = String(required=True)
    courier = String(required=True)
    tracking_id = String(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="Shipment")
class ShipmentStatusChanged:
    """The courier reported a new status for a shipment."""

    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    courier_status = String()
    occurred_at = DateTime(required=True)


@storefront.event(part_of="Shipment")
class ShipmentDelivered:
    __version__ = 1

    shipment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    tracking_id = String(required=True)
    delivered_at = DateTime(required=True)
