"""Manual courier: shipments handed over by hand and updated by staff.

Statuses are the shipment vocabulary itself.
"""

from storefront.fulfillment.couriers.port import CourierAdapter, CourierBooking, TrackingUpdate
from storefront.fulfillment.shipment import ShipmentStatus

MANUAL_STATUSES = {status.value: status for status in ShipmentStatus}


class ManualCourier(CourierAdapter):
    name = "manual"
    status_map = MANUAL_STATUSES
    reference_field = "tracking_id"
    status_field = "status"

    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:  # noqa: ARG002
        return CourierBooking(tracking_id=f"MAN-{order.order_number}")

    def track(self, tracking_id: str) -> TrackingUpdate:
        return TrackingUpdate(tracking_id=tracking_id, courier_status="", status=None)
