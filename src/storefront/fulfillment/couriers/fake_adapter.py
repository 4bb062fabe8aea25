"""Fake courier adapter: deterministic courier for testing and development.

It borrows the identity of a real courier (name, status table and webhook
field names) so webhooks posted in fake mode go through the real mapping.
Tracking answers come from ``statuses``, which tests set directly.
"""

from uuid import uuid4

from storefront.errors import CourierError
from storefront.fulfillment.couriers.port import CourierAdapter, CourierBooking, TrackingUpdate


class FakeCourier(CourierAdapter):
    """Fake courier that always succeeds by default."""

    def __init__(self, template: type[CourierAdapter] | None = None, name: str = "fake") -> None:
        if template is not None:
            self.name = template.name
            self.status_map = template.status_map
            self.reference_field = template.reference_field
            self.status_field = template.status_field
            self.tracking_url_template = template.tracking_url_template
        else:
            self.name = name
        self.should_succeed = True
        self.failure_reason = "Courier unavailable"
        self.statuses: dict[str, str] = {}
        self.calls: list[dict] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Courier unavailable") -> None:
        """Configure the fake courier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:
        self.calls.append({"method": "create_shipment", "order_number": order.order_number, "cod_amount": cod_amount})
        if not self.should_succeed:
            raise CourierError(self.failure_reason)

        tracking_id = f"{self.name.upper()}-{uuid4().hex[:10].upper()}"
        return CourierBooking(
            tracking_id=tracking_id,
            consignment_id=tracking_id,
            tracking_url=self.tracking_url(tracking_id),
        )

    def track(self, tracking_id: str) -> TrackingUpdate:
        self.calls.append({"method": "track", "tracking_id": tracking_id})
        if not self.should_succeed:
            raise CourierError(self.failure_reason)

        courier_status = self.statuses.get(tracking_id, "")
        return TrackingUpdate(
            tracking_id=tracking_id,
            courier_status=courier_status,
            status=self.map_status(courier_status),
        )
