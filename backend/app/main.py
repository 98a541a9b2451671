import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.api.router import api_router
from app.capabilities import load_schema_capabilities, set_schema_capabilities
from app.config import APP_VERSION, settings
from app.database import engine
from app.middleware.logging import RequestLoggingMiddleware

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)

logger = logging.getLogger("inbound")


def _init_error_reporting() -> None:
    if not settings.sentry_dsn:
        return
    try:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            environment=settings.environment,
            release=f"inbound-freight@{APP_VERSION}",
            traces_sample_rate=0.1,
        )
    except Exception as e:
        # Startup continues without error reporting
        logger.warning("Error reporting disabled: %s", e)
    else:
        logger.info("Error reporting enabled (env=%s)", settings.environment)


async def _snapshot_schema() -> None:
    """Record which optional tables and columns this database actually has."""
    try:
        caps = await load_schema_capabilities(engine)
    except SQLAlchemyError as e:
        logger.warning("Schema inspection failed, assuming full model schema: %s", e)
        return
    set_schema_capabilities(caps)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _init_error_reporting()
    await _snapshot_schema()
    logger.info("Inbound freight API up (env=%s, version=%s)", settings.environment, APP_VERSION)
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Inbound freight API stopped")


app = FastAPI(
    title="Inbound Freight Reconciliation",
    description=(
        "Matches vendor freight imports to drivers and route legs, "
        "then advances each shipment through its delivery stages"
    ),
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(api_router, prefix="/api")
