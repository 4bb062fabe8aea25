"""Steadfast courier adapter."""

import httpx

from storefront.errors import CourierError
from storefront.fulfillment.couriers.http import HttpCourierAdapter
from storefront.fulfillment.couriers.port import CourierBooking, TrackingUpdate, status_table
from storefront.fulfillment.shipment import ShipmentStatus

STEADFAST_STATUSES = status_table(
    {
        "pending": ShipmentStatus.CREATED,
        "in_review": ShipmentStatus.CREATED,
        "accepted": ShipmentStatus.CREATED,
        "picked": ShipmentStatus.PICKED,
        "on_the_way": ShipmentStatus.IN_TRANSIT,
        "hold": ShipmentStatus.IN_TRANSIT,
        "delivered": ShipmentStatus.DELIVERED,
        "delivered_approval_pending": ShipmentStatus.DELIVERED,
        "partial_delivered": ShipmentStatus.DELIVERED,
        "cancelled": ShipmentStatus.CANCELLED,
        "returned": ShipmentStatus.RETURNED,
    }
)


class SteadfastCourier(HttpCourierAdapter):
    name = "steadfast"
    status_map = STEADFAST_STATUSES
    reference_field = "consignment_id"
    status_field = "status"
    tracking_url_template = "https://steadfast.com.bd/t/{tracking_id}"

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        api_base: str = "https://portal.packzy.com/api/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(api_base, timeout=timeout, transport=transport)
        self.api_key = api_key
        self.secret_key = secret_key

    def headers(self) -> dict:
        return {"Accept": "application/json", "Api-Key": self.api_key, "Secret-Key": self.secret_key}

    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:
        address = order.shipping_address
        body = self.request(
            "POST",
            "/create_order",
            json={
                "invoice": order.order_number,
                "recipient_name": address.name,
                "recipient_phone": address.phone,
                "recipient_address": ", ".join(filter(None, [address.line1, address.line2, address.city])),
                "cod_amount": cod_amount,
                "note": order.notes or "",
            },
        )
        consignment = body.get("consignment") or {}
        consignment_id = consignment.get("consignment_id")
        if not consignment_id:
            raise CourierError(body.get("message") or "Steadfast did not return a consignment")

        tracking_code = consignment.get("tracking_code") or str(consignment_id)
        return CourierBooking(
            tracking_id=str(tracking_code),
            consignment_id=str(consignment_id),
            tracking_url=self.tracking_url(tracking_code),
            raw=body,
        )

    def track(self, tracking_id: str) -> TrackingUpdate:
        body = self.request("GET", f"/status_by_trackingcode/{tracking_id}", retries=1)
        courier_status = body.get("delivery_status") or ""
        return TrackingUpdate(
            tracking_id=tracking_id,
            courier_status=courier_status,
            status=self.map_status(courier_status),
            raw=body,
        )
