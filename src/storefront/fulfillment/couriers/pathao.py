"""Pathao courier adapter."""

import httpx

from storefront.errors import CourierError
from storefront.fulfillment.couriers.http import HttpCourierAdapter
from storefront.fulfillment.couriers.port import CourierBooking, TrackingUpdate, status_table
from storefront.fulfillment.shipment import ShipmentStatus

PATHAO_STATUSES = status_table(
    {
        "Pending": ShipmentStatus.CREATED,
        "Order Placed": ShipmentStatus.CREATED,
        "Pickup Requested": ShipmentStatus.CREATED,
        "Order Picked": ShipmentStatus.PICKED,
        "Picked": ShipmentStatus.PICKED,
        "Order Dispatched": ShipmentStatus.IN_TRANSIT,
        "On The Way": ShipmentStatus.IN_TRANSIT,
        "In Transit": ShipmentStatus.IN_TRANSIT,
        "Out For Delivery": ShipmentStatus.OUT_FOR_DELIVERY,
        "Order Delivered": ShipmentStatus.DELIVERED,
        "Delivered": ShipmentStatus.DELIVERED,
        "Delivery Failed": ShipmentStatus.FAILED,
        "Order Cancelled": ShipmentStatus.CANCELLED,
        "Returned": ShipmentStatus.RETURNED,
        "Return": ShipmentStatus.RETURNED,
    }
)


class PathaoCourier(HttpCourierAdapter):
    name = "pathao"
    status_map = PATHAO_STATUSES
    reference_field = "consignment_id"
    status_field = "status"
    tracking_url_template = "https://merchant.pathao.com/tracking?consignment_id={tracking_id}"

    def __init__(
        self,
        access_token: str,
        store_id: str,
        api_base: str = "https://api-hermes.pathao.com",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(api_base, timeout=timeout, transport=transport)
        self.access_token = access_token
        self.store_id = store_id

    def headers(self) -> dict:
        return {"Accept": "application/json", "Authorization": f"Bearer {self.access_token}"}

    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:
        address = order.shipping_address
        body = self.request(
            "POST",
            "/aladdin/api/v1/orders",
            json={
                "store_id": self.store_id,
                "merchant_order_id": order.order_number,
                "recipient_name": address.name,
                "recipient_phone": address.phone,
                "recipient_address": ", ".join(filter(None, [address.line1, address.line2, address.city])),
                "delivery_type": 48,
                "item_type": 2,
                "special_instruction": order.notes or "",
                "item_quantity": sum(item.quantity for item in order.items),
                "item_weight": 0.5,
                "amount_to_collect": cod_amount,
                "item_description": ", ".join(f"{i.product_name} x{i.quantity}" for i in order.items),
            },
        )
        data = body.get("data") or {}
        consignment_id = data.get("consignment_id")
        if not consignment_id:
            raise CourierError(body.get("message") or "Pathao did not return a consignment id")
        return CourierBooking(
            tracking_id=str(consignment_id),
            consignment_id=str(consignment_id),
            tracking_url=self.tracking_url(consignment_id),
            raw=body,
        )

    def track(self, tracking_id: str) -> TrackingUpdate:
        body = self.request("GET", f"/aladdin/api/v1/orders/{tracking_id}/info", retries=1)
        courier_status = (body.get("data") or {}).get("order_status") or ""
        return TrackingUpdate(
            tracking_id=tracking_id,
            courier_status=courier_status,
            status=self.map_status(courier_status),
            raw=body,
        )
