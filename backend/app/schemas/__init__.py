from app.schemas.health import HealthResponse
from app.schemas.inbound import (
    BatchRequest,
    BatchResponse,
    ProcessRequest,
    ProcessResponse,
    QueueResponse,
)

__all__ = [
    "BatchRequest",
    "BatchResponse",
    "HealthResponse",
    "ProcessRequest",
    "ProcessResponse",
    "QueueResponse",
]
