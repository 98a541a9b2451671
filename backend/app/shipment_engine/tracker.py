"""Import-record tracking columns (is_inserted, shipment ids, inserted_at).

Tracking is advisory: the authoritative link is the shipment detail's
back-reference, so every write here is gated on the columns existing.
"""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.capabilities import IMPORT_TRACKING_FIELDS, OptionalField, SchemaCapabilities
from app.models.import_record import ImportRecord

_import_table = ImportRecord.__table__


class ImportTracker:
    def __init__(self, capabilities: SchemaCapabilities):
        self.capabilities = capabilities

    def _supported(self) -> list[OptionalField]:
        return self.capabilities.supported(IMPORT_TRACKING_FIELDS)

    def _values(self, shipment_id: int, shipment_detail_id: int) -> dict:
        values = {
            OptionalField.IMPORT_IS_INSERTED: True,
            OptionalField.IMPORT_SHIPMENT_ID: shipment_id,
            OptionalField.IMPORT_SHIPMENT_DETAIL_ID: shipment_detail_id,
            OptionalField.IMPORT_INSERTED_AT: datetime.now(timezone.utc),
        }
        return {f.column: values[f] for f in self._supported()}

    async def update_tracking(
        self, db: AsyncSession, import_id: int, shipment_id: int, shipment_detail_id: int
    ) -> list[str]:
        """Mark the record as inserted and link it. Returns the columns written."""
        values = self._values(shipment_id, shipment_detail_id)
        if not values:
            return []
        await db.execute(
            update(_import_table).where(_import_table.c.id == import_id).values(**values)
        )
        return list(values)

    async def backfill_if_missing(
        self, db: AsyncSession, import_id: int, shipment_id: int, shipment_detail_id: int
    ) -> list[str]:
        """Fill only tracking columns that are still empty."""
        supported = self._supported()
        if not supported:
            return []

        row = (await db.execute(
            select(*[_import_table.c[f.column] for f in supported])
            .where(_import_table.c.id == import_id)
        )).mappings().first()
        if row is None:
            return []

        wanted = self._values(shipment_id, shipment_detail_id)
        values = {}
        for column, value in wanted.items():
            current = row[column]
            if column == OptionalField.IMPORT_IS_INSERTED.column:
                if not current:
                    values[column] = value
            elif current is None:
                values[column] = value

        if values:
            await db.execute(
                update(_import_table).where(_import_table.c.id == import_id).values(**values)
            )
        return list(values)
