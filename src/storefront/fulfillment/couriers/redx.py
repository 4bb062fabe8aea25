"""RedX courier adapter."""

import httpx

from storefront.errors import CourierError
from storefront.fulfillment.couriers.http import HttpCourierAdapter
from storefront.fulfillment.couriers.port import CourierBooking, TrackingUpdate, status_table
from storefront.fulfillment.shipment import ShipmentStatus

REDX_STATUSES = status_table(
    {
        "pending": ShipmentStatus.CREATED,
        "pickup_scheduled": ShipmentStatus.CREATED,
        "picked": ShipmentStatus.PICKED,
        "in_transit": ShipmentStatus.IN_TRANSIT,
        "out_for_delivery": ShipmentStatus.OUT_FOR_DELIVERY,
        "delivered": ShipmentStatus.DELIVERED,
        "delivery_failed": ShipmentStatus.FAILED,
        "cancelled": ShipmentStatus.CANCELLED,
        "returned": ShipmentStatus.RETURNED,
    }
)


class RedxCourier(HttpCourierAdapter):
    name = "redx"
    status_map = REDX_STATUSES
    reference_field = "tracking_number"
    status_field = "status"
    tracking_url_template = "https://redx.com.bd/track-parcel/?trackingId={tracking_id}"

    def __init__(
        self,
        api_key: str,
        api_base: str = "https://openapi.redx.com.bd/v1.0.0-beta",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(api_base, timeout=timeout, transport=transport)
        self.api_key = api_key

    def headers(self) -> dict:
        return {"Accept": "application/json", "API-ACCESS-TOKEN": f"Bearer {self.api_key}"}

    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:
        address = order.shipping_address
        body = self.request(
            "POST",
            "/parcel",
            json={
                "customer_name": address.name,
                "customer_phone": address.phone,
                "delivery_area": address.city,
                "customer_address": ", ".join(filter(None, [address.line1, address.line2])),
                "merchant_invoice_id": order.order_number,
                "cash_collection_amount": f"{cod_amount:.2f}",
                "parcel_weight": 500,
                "instruction": order.notes or "",
                "value": f"{order.total:.2f}",
            },
        )
        tracking_id = body.get("tracking_id")
        if not tracking_id:
            raise CourierError(body.get("message") or "RedX did not return a tracking id")
        return CourierBooking(tracking_id=str(tracking_id), tracking_url=self.tracking_url(tracking_id), raw=body)

    def track(self, tracking_id: str) -> TrackingUpdate:
        body = self.request("GET", f"/parcel/info/{tracking_id}", retries=1)
        courier_status = (body.get("parcel") or {}).get("status") or ""
        return TrackingUpdate(
            tracking_id=tracking_id,
            courier_status=courier_status,
            status=self.map_status(courier_status),
            raw=body,
        )
