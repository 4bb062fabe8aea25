"""Shipment aggregate: one courier consignment for an order.

Courier statuses are translated into a small vocabulary before they reach
the shipment. The forward path is

    CREATED -> PICKED -> IN_TRANSIT -> OUT_FOR_DELIVERY -> DELIVERED

and a shipment never moves backwards along it: couriers deliver updates late
and out of order. FAILED (a delivery attempt failed) can be followed by a new
attempt or by RETURNED. DELIVERED, RETURNED and CANCELLED are terminal.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.fields import DateTime, Float, HasMany, Identifier, String

from storefront.domain import storefront
from storefront.fulfillment.events import (
    ShipmentCreated,
    ShipmentDelivered,
    ShipmentStatusChanged,
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ShipmentStatus(Enum):
    CREATED = "created"
    PICKED = "picked"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


_FORWARD_RANK = {
    ShipmentStatus.CREATED: 0,
    ShipmentStatus.PICKED: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
}

_TERMINAL_STATUSES = {ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED, ShipmentStatus.CANCELLED}

# Shipment statuses that put the order on the road
IN_FLIGHT_STATUSES = {ShipmentStatus.PICKED, ShipmentStatus.IN_TRANSIT, ShipmentStatus.OUT_FOR_DELIVERY}


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Shipment")
class ShipmentEvent:
    """A status report received from the courier, applied or not."""

    status = String(max_length=50)
    courier_status = String(max_length=100)
    note = String(max_length=500)
    occurred_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Shipment:
    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=32)
    courier = String(required=True, max_length=50)
    tracking_id = String(required=True, max_length=255, unique=True)
    consignment_id = String(max_length=255)
    tracking_url = String(max_length=1000)
    status = String(choices=ShipmentStatus, default=ShipmentStatus.CREATED.value)
    courier_status = String(max_length=100)
    cod_amount = Float(default=0.0)
    events = HasMany(ShipmentEvent)
    delivered_at = DateTime()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, order, courier: str, booking, cod_amount: float = 0.0):
        now = datetime.now(UTC)
        shipment = cls(
            order_id=str(order.id),
            order_number=order.order_number,
            courier=courier,
            tracking_id=booking.tracking_id,
            consignment_id=booking.consignment_id,
            tracking_url=booking.tracking_url,
            status=ShipmentStatus.CREATED.value,
            cod_amount=cod_amount,
            created_at=now,
            updated_at=now,
        )
        shipment.add_events(
            ShipmentEvent(status=ShipmentStatus.CREATED.value, note="Booked with courier", occurred_at=now)
        )
        shipment.raise_(
            ShipmentCreated(
                shipment_id=str(shipment.id),
                order_id=str(order.id),
                order_number=order.order_number,
                courier=courier,
                tracking_id=booking.tracking_id,
                created_at=now,
            )
        )
        return shipment

    @property
    def is_terminal(self) -> bool:
        return ShipmentStatus(self.status) in _TERMINAL_STATUSES

    @property
    def history(self) -> list[dict]:
        return [
            {
                "status": event.status,
                "courier_status": event.courier_status,
                "note": event.note,
                "occurred_at": event.occurred_at.isoformat() if event.occurred_at else None,
            }
            for event in sorted(self.events, key=lambda e: e.occurred_at)
        ]

    def _accepts(self, target: ShipmentStatus) -> bool:
        current = ShipmentStatus(self.status)
        if current in _TERMINAL_STATUSES or target == current:
            return False
        if target in _FORWARD_RANK and current in _FORWARD_RANK:
            return _FORWARD_RANK[target] > _FORWARD_RANK[current]
        if current == ShipmentStatus.FAILED:
            return target not in (ShipmentStatus.CREATED, ShipmentStatus.PICKED)
        return True

    def record_status(
        self,
        status: ShipmentStatus | None,
        courier_status: str | None,
        at: datetime | None = None,
    ) -> bool:
        """Record a courier report. Returns True if the shipment's status changed.

        Every report lands in the history. Reports that would move the
        shipment backwards, or that the courier table does not know, change
        nothing else.
        """
        at = at or datetime.now(UTC)
        applied = status is not None and self._accepts(status)

        self.add_events(
            ShipmentEvent(
                status=status.value if status else None,
                courier_status=courier_status,
                note=None if applied else "Not applied",
                occurred_at=at,
            )
        )
        self.courier_status = courier_status or self.courier_status
        self.updated_at = datetime.now(UTC)
        if not applied:
            return False

        previous = self.status
        self.status = status.value
        self.raise_(
            ShipmentStatusChanged(
                shipment_id=str(self.id),
                order_id=str(self.order_id),
                previous_status=previous,
                new_status=status.value,
                courier_status=courier_status,
                occurred_at=at,
            )
        )

        if status == ShipmentStatus.DELIVERED:
            self.delivered_at = at
            self.raise_(
                ShipmentDelivered(
                    shipment_id=str(self.id),
                    order_id=str(self.order_id),
                    tracking_id=self.tracking_id,
                    delivered_at=at,
                )
            )
        return True


@storefront.repository(part_of=Shipment)
class ShipmentRepository:
    def find_by_tracking_id(self, courier: str, tracking_id: str) -> Shipment | None:
        for field_name in ("tracking_id", "consignment_id"):
            matches = self._dao.query.filter(courier=courier, **{field_name: tracking_id}).all().items
            if matches:
                return matches[0]
        return None

    def for_order(self, order_id) -> list[Shipment]:
        return self._dao.query.filter(order_id=str(order_id)).all().items
