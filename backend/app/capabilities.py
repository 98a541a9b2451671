"""Schema capability map — which optional tables/columns this database has.

Deployments of the freight database differ slightly: some carry structured
import columns, some only the JSON payload; some have weight or BOL columns on
shipment details, some do not. Instead of probing the schema on every query,
the live schema is inspected once at startup and frozen into a
``SchemaCapabilities`` snapshot that engines consult before touching any
``OptionalField``.
"""

import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy import MetaData, inspect
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger("inbound.capabilities")


class OptionalField(str, enum.Enum):
    """Every column whose presence varies across deployments."""

    # Structured import columns (fall back to payload_json when absent)
    IMPORT_JOBNAME = "import_records.jobname"
    IMPORT_CARRIER = "import_records.carrier"
    IMPORT_TRUCK = "import_records.truck"
    IMPORT_TERMINAL = "import_records.terminal"
    IMPORT_STATE = "import_records.state"
    IMPORT_DELIVERY_TIME = "import_records.delivery_time"
    IMPORT_SHIPMENT_NUMBER = "import_records.shipment_number"
    IMPORT_TICKET_NUMBER = "import_records.ticket_number"

    # Import tracking
    IMPORT_IS_INSERTED = "import_records.is_inserted"
    IMPORT_SHIPMENT_ID = "import_records.shipment_id"
    IMPORT_SHIPMENT_DETAIL_ID = "import_records.shipment_detail_id"
    IMPORT_INSERTED_AT = "import_records.inserted_at"

    # Import attachments
    IMPORT_IMAGE_PATH = "import_records.image_path"
    IMPORT_IMAGE_ORIGINAL = "import_records.image_original"

    # Shipment detail
    DETAIL_NOTES = "shipment_details.notes"
    DETAIL_TICKET_NUMBER = "shipment_details.ticket_number"
    DETAIL_NET_LBS = "shipment_details.net_lbs"
    DETAIL_TONS = "shipment_details.tons"
    DETAIL_BOL_PATH = "shipment_details.bol_path"
    DETAIL_BOL_TYPE = "shipment_details.bol_type"
    DETAIL_REVIEW_DATE = "shipment_details.review_date"

    # Shipment
    SHIPMENT_DELIVERY_TIME = "shipments.delivery_time"
    SHIPMENT_DELIVERY_DATE = "shipments.delivery_date"
    SHIPMENT_IS_FINISHED = "shipments.is_finished"

    @property
    def table(self) -> str:
        return self.value.split(".", 1)[0]

    @property
    def column(self) -> str:
        return self.value.split(".", 1)[1]


IMPORT_STRUCTURED_FIELDS = (
    OptionalField.IMPORT_JOBNAME,
    OptionalField.IMPORT_CARRIER,
    OptionalField.IMPORT_TRUCK,
    OptionalField.IMPORT_TERMINAL,
    OptionalField.IMPORT_STATE,
    OptionalField.IMPORT_DELIVERY_TIME,
    OptionalField.IMPORT_SHIPMENT_NUMBER,
    OptionalField.IMPORT_TICKET_NUMBER,
)

IMPORT_TRACKING_FIELDS = (
    OptionalField.IMPORT_IS_INSERTED,
    OptionalField.IMPORT_SHIPMENT_ID,
    OptionalField.IMPORT_SHIPMENT_DETAIL_ID,
    OptionalField.IMPORT_INSERTED_AT,
)

IMPORT_ATTACHMENT_FIELDS = (
    OptionalField.IMPORT_IMAGE_PATH,
    OptionalField.IMPORT_IMAGE_ORIGINAL,
)

WEIGHT_FIELDS = (OptionalField.DETAIL_NET_LBS, OptionalField.DETAIL_TONS)

DELIVERY_FIELDS = (
    OptionalField.SHIPMENT_DELIVERY_TIME,
    OptionalField.SHIPMENT_DELIVERY_DATE,
)


@dataclass(frozen=True)
class SchemaCapabilities:
    """Immutable snapshot of table -> column names."""

    tables: dict[str, frozenset[str]] = field(default_factory=dict)

    def has_column(self, table: str, column: str) -> bool:
        return column in self.tables.get(table, frozenset())

    def supports(self, optional: OptionalField) -> bool:
        return self.has_column(optional.table, optional.column)

    def supported(self, fields: tuple[OptionalField, ...]) -> list[OptionalField]:
        return [f for f in fields if self.supports(f)]

    def missing_optional(self) -> list[str]:
        return [f.value for f in OptionalField if not self.supports(f)]

    def without(self, *fields: OptionalField) -> "SchemaCapabilities":
        """Copy of this snapshot with the given columns removed."""
        tables = {name: set(cols) for name, cols in self.tables.items()}
        for f in fields:
            tables.get(f.table, set()).discard(f.column)
        return SchemaCapabilities({name: frozenset(cols) for name, cols in tables.items()})

    @classmethod
    def from_metadata(cls, metadata: MetaData | None = None) -> "SchemaCapabilities":
        """Capabilities of the full model schema."""
        if metadata is None:
            from app.models import Base

            metadata = Base.metadata
        return cls({
            name: frozenset(col.name for col in table.columns)
            for name, table in metadata.tables.items()
        })


async def load_schema_capabilities(engine: AsyncEngine) -> SchemaCapabilities:
    """Inspect the live database once and freeze the result."""

    def _inspect(sync_conn) -> dict[str, frozenset[str]]:
        inspector = inspect(sync_conn)
        return {
            table: frozenset(col["name"] for col in inspector.get_columns(table))
            for table in inspector.get_table_names()
        }

    async with engine.connect() as conn:
        tables = await conn.run_sync(_inspect)

    caps = SchemaCapabilities(tables)
    missing = caps.missing_optional()
    logger.info(
        "Schema capabilities loaded: %d tables, %d optional columns missing",
        len(tables), len(missing),
    )
    if missing:
        logger.debug("Missing optional columns: %s", ", ".join(missing))
    return caps


_capabilities: SchemaCapabilities | None = None


def set_schema_capabilities(caps: SchemaCapabilities) -> None:
    global _capabilities
    _capabilities = caps


def get_schema_capabilities() -> SchemaCapabilities:
    """Process-wide snapshot; falls back to the model schema before startup ran."""
    global _capabilities
    if _capabilities is None:
        _capabilities = SchemaCapabilities.from_metadata()
    return _capabilities
