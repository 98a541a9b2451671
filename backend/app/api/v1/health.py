from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.capabilities import SchemaCapabilities
from app.config import APP_VERSION, settings
from app.dependencies import get_capabilities, get_db
from app.schemas.health import HealthResponse

router = APIRouter()


async def _ping(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> HealthResponse:
    """Liveness plus the schema snapshot the engines are writing against."""
    db_ok = await _ping(db)
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        database="healthy" if db_ok else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.environment,
        version=APP_VERSION,
        missing_optional_columns=capabilities.missing_optional(),
    )
