"""Shipment Tracker: courier status reports drive the shipment and its order.

Reports arrive by webhook (``RecordCourierUpdate``) or by polling the
courier (``RefreshShipment``). Both are translated through the courier's
status table and then applied the same way:

- picked, in transit, out for delivery: the order is shipped
- delivered: shipment and order get ``delivered_at``, which opens the return
  window
- failed, returned, cancelled: recorded on the shipment only

The order only ever moves forward. A late ``picked`` after ``delivered``
changes nothing.
"""

from datetime import datetime

import structlog
from protean import handle
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import NotFound
from storefront.fulfillment.couriers import get_courier
from storefront.fulfillment.couriers.port import TrackingUpdate
from storefront.fulfillment.shipment import IN_FLIGHT_STATUSES, Shipment, ShipmentStatus
from storefront.order.order import Order, OrderStatus
from storefront.utils.locks import order_lock_key, process_serialized, shipment_lock_key

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Shipment")
class RecordCourierUpdate:
    courier = String(required=True, max_length=50)
    tracking_id = String(required=True, max_length=255)
    courier_status = String(required=True, max_length=100)
    occurred_at = DateTime()


@storefront.command(part_of="Shipment")
class RefreshShipment:
    shipment_id = Identifier(required=True)


def apply_update(shipment: Shipment, courier_status: str, status: ShipmentStatus | None, at: datetime | None = None):
    """Apply a translated courier report to a shipment and its order. Returns True if anything changed."""
    changed = shipment.record_status(status, courier_status, at=at)
    if not changed:
        logger.info(
            "courier_update_not_applied",
            shipment_id=str(shipment.id),
            courier_status=courier_status,
            shipment_status=shipment.status,
        )
        return False

    order_repo = current_domain.repository_for(Order)
    order = order_repo.get(shipment.order_id)

    if status == ShipmentStatus.DELIVERED:
        order.advance_to(OrderStatus.DELIVERED.value, at=shipment.delivered_at, shipment_id=shipment.id)
    elif status in IN_FLIGHT_STATUSES:
        order.advance_to(OrderStatus.SHIPPED.value, at=at, shipment_id=shipment.id)
    else:
        logger.warning(
            "shipment_exception",
            shipment_id=str(shipment.id),
            order_id=str(order.id),
            status=status.value,
            courier_status=courier_status,
        )
    order_repo.add(order)
    return True


@storefront.command_handler(part_of=Shipment)
class ShipmentTrackingHandler:
    @handle(RecordCourierUpdate)
    def record_courier_update(self, command):
        repo = current_domain.repository_for(Shipment)
        shipment = repo.find_by_tracking_id(command.courier, command.tracking_id)
        if shipment is None:
            message = f"No {command.courier} shipment with tracking id {command.tracking_id}"
            raise NotFound(message, field="tracking_id")

        courier = get_courier(command.courier)
        changed = apply_update(
            shipment,
            command.courier_status,
            courier.map_status(command.courier_status),
            at=command.occurred_at,
        )
        repo.add(shipment)
        return changed

    @handle(RefreshShipment)
    def refresh_shipment(self, command):
        repo = current_domain.repository_for(Shipment)
        shipment = repo.get(command.shipment_id)
        if shipment.is_terminal:
            return False

        update = get_courier(shipment.courier).track(shipment.tracking_id)
        if not update.courier_status or update.courier_status == shipment.courier_status:
            return False

        changed = apply_update(shipment, update.courier_status, update.status, at=update.occurred_at)
        repo.add(shipment)
        return changed


def _shipment_keys(shipment: Shipment) -> tuple[str, str]:
    return shipment_lock_key(str(shipment.id)), order_lock_key(str(shipment.order_id))


def record_courier_webhook(courier_name: str, payload: dict) -> bool:
    """Parse a courier webhook body and apply it while holding the shipment and order keys."""
    update: TrackingUpdate = get_courier(courier_name).parse_webhook(payload)
    shipment = current_domain.repository_for(Shipment).find_by_tracking_id(courier_name, update.tracking_id)
    if shipment is None:
        raise NotFound(f"No {courier_name} shipment with tracking id {update.tracking_id}", field="tracking_id")

    command = RecordCourierUpdate(
        courier=courier_name,
        tracking_id=update.tracking_id,
        courier_status=update.courier_status,
        occurred_at=update.occurred_at,
    )
    return process_serialized(command, *_shipment_keys(shipment))


def refresh_shipment(shipment_id) -> bool:
    shipment = current_domain.repository_for(Shipment).get(shipment_id)
    return process_serialized(RefreshShipment(shipment_id=shipment_id), *_shipment_keys(shipment))
