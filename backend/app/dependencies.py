from fastapi import Depends

from app.capabilities import SchemaCapabilities, get_schema_capabilities
from app.config import settings
from app.database import get_db
from app.shipment_engine.batch import BatchSequencer
from app.shipment_engine.service import InboundShipmentService

# Re-export get_db for use in Depends()
get_db = get_db


def get_capabilities() -> SchemaCapabilities:
    return get_schema_capabilities()


def get_inbound_service(
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> InboundShipmentService:
    return InboundShipmentService(settings, capabilities)


def get_batch_sequencer(
    service: InboundShipmentService = Depends(get_inbound_service),
) -> BatchSequencer:
    return BatchSequencer(settings, service)
