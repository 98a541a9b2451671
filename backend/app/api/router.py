from fastapi import APIRouter

from app.api.v1 import health, inbound_loads

api_router = APIRouter()

api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(inbound_loads.router, prefix="/v1/inbound-loads", tags=["inbound-loads"])
