from app.models.base import Base, TimestampMixin
from app.models.fleet import (
    Carrier,
    Contact,
    Driver,
    PadLocation,
    PullPoint,
    RouteLeg,
    Vehicle,
)
from app.models.import_record import ImportRecord
from app.models.shipment import INPUT_METHOD_IMPORT, Shipment, ShipmentDetail

__all__ = [
    "Base",
    "TimestampMixin",
    "Carrier",
    "Contact",
    "Driver",
    "Vehicle",
    "PullPoint",
    "PadLocation",
    "RouteLeg",
    "ImportRecord",
    "Shipment",
    "ShipmentDetail",
    "INPUT_METHOD_IMPORT",
]
