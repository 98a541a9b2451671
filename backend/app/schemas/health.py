from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    database: str
    timestamp: datetime
    environment: str
    version: str
    # Optional columns this deployment's schema lacks; writes to them are skipped
    missing_optional_columns: list[str] = Field(default_factory=list)
