"""Courier port: the contract every courier integration implements.

Each courier speaks its own status language. An adapter carries a table that
maps the courier's statuses (matched case-insensitively) onto
``ShipmentStatus``; statuses missing from the table map to ``None`` and are
recorded without effect.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from storefront.errors import MalformedCallback
from storefront.fulfillment.shipment import ShipmentStatus


@dataclass(frozen=True)
class CourierBooking:
    tracking_id: str
    consignment_id: str | None = None
    tracking_url: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TrackingUpdate:
    tracking_id: str
    courier_status: str
    status: ShipmentStatus | None
    occurred_at: datetime | None = None
    raw: dict = field(default_factory=dict)


class CourierAdapter(ABC):
    name: str = "courier"
    status_map: dict[str, ShipmentStatus] = {}
    reference_field: str = "consignment_id"
    status_field: str = "status"
    tracking_url_template: str | None = None

    @abstractmethod
    def create_shipment(self, order, cod_amount: float = 0.0) -> CourierBooking:
        """Book a consignment for ``order``. Raises ``CourierError`` on failure."""
        ...

    @abstractmethod
    def track(self, tracking_id: str) -> TrackingUpdate:
        """Poll the courier for the current status of a consignment."""
        ...

    def map_status(self, courier_status: str | None) -> ShipmentStatus | None:
        if not courier_status:
            return None
        return self.status_map.get(courier_status.strip().lower())

    def tracking_url(self, tracking_id: str) -> str | None:
        if not self.tracking_url_template:
            return None
        return self.tracking_url_template.format(tracking_id=tracking_id)

    def parse_webhook(self, payload: dict) -> TrackingUpdate:
        """Read a status webhook posted by the courier."""
        if not isinstance(payload, dict):
            raise MalformedCallback("Courier webhook body must be an object")
        tracking_id = payload.get(self.reference_field)
        courier_status = payload.get(self.status_field)
        if not tracking_id or not courier_status:
            raise MalformedCallback(f"Courier webhook needs {self.reference_field} and {self.status_field}")

        return TrackingUpdate(
            tracking_id=str(tracking_id),
            courier_status=str(courier_status),
            status=self.map_status(str(courier_status)),
            raw=payload,
        )


def status_table(mapping: dict[str, ShipmentStatus]) -> dict[str, ShipmentStatus]:
    return {key.lower(): value for key, value in mapping.items()}
