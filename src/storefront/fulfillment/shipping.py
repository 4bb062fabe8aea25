"""Shipment creation: book a courier for a processing order.

The courier is called before anything is written, so a courier failure
leaves the order processing and no shipment behind. On success the shipment
is recorded and the order moves to shipped in the same UnitOfWork.
"""

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.errors import InvalidTransition
from storefront.fulfillment.couriers import get_courier
from storefront.fulfillment.shipment import Shipment, ShipmentStatus
from storefront.order.order import Order, OrderStatus
from storefront.payment.payment import PaymentMethod
from storefront.utils.locks import order_lock_key, process_serialized

logger = structlog.get_logger(__name__)

_INACTIVE = {ShipmentStatus.CANCELLED.value, ShipmentStatus.RETURNED.value}


@storefront.command(part_of="Shipment")
class CreateShipment:
    order_id = Identifier(required=True)
    courier = String(required=True, max_length=50)


def cash_to_collect(order: Order) -> float:
    if order.payment_method == PaymentMethod.COD.value and not order.is_paid:
        return order.total
    return 0.0


@storefront.command_handler(part_of=Shipment)
class CreateShipmentHandler:
    @handle(CreateShipment)
    def create_shipment(self, command):
        order_repo = current_domain.repository_for(Order)
        shipment_repo = current_domain.repository_for(Shipment)
        order = order_repo.get(command.order_id)

        if OrderStatus(order.status) != OrderStatus.PROCESSING:
            raise InvalidTransition(f"Order is {order.status}; only processing orders can be shipped")
        if any(s.status not in _INACTIVE for s in shipment_repo.for_order(order.id)):
            raise InvalidTransition("Order already has an active shipment")

        courier = get_courier(command.courier)
        cod_amount = cash_to_collect(order)
        booking = courier.create_shipment(order, cod_amount=cod_amount)

        shipment = Shipment.create(order, courier.name, booking, cod_amount=cod_amount)
        order.mark_shipped(shipment_id=shipment.id)
        shipment_repo.add(shipment)
        order_repo.add(order)

        logger.info(
            "shipment_created",
            order_id=str(order.id),
            shipment_id=str(shipment.id),
            courier=courier.name,
            tracking_id=shipment.tracking_id,
        )
        return str(shipment.id)


def create_shipment(order_id, courier: str) -> str:
    """Book a shipment while holding the order's key, so one order never gets two live shipments."""
    return process_serialized(CreateShipment(order_id=order_id, courier=courier), order_lock_key(str(order_id)))
