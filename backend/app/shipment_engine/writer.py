"""ShipmentWriter — creates and advances the shipment aggregate.

Stage 1 creates one Shipment + ShipmentDetail pair for the group and stamps
the detail with the import back-reference. Stages 2-4 update that pair in
place; which fields each stage may write:

    stage                 boxes  weights/ticket  BOL  delivery+finished  review
    IN_TRANSIT              x          x          x
    DELIVERED_PENDING                  x                     x
    DELIVERED_CONFIRMED                x          x          x             x

Every optional column is checked against the schema capabilities first.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import desc, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.capabilities import OptionalField, SchemaCapabilities
from app.freight_import.attachments import mark_superseded
from app.freight_import.dates import resolve_delivery_time, review_timestamp
from app.freight_import.normalizer import CandidateRecord, ImportNormalizer, import_columns
from app.matching_engine.service import RecordMatch
from app.matching_engine.stages import Stage
from app.models.import_record import ImportRecord
from app.models.shipment import INPUT_METHOD_IMPORT, Shipment, ShipmentDetail
from app.shipment_engine.boxes import merge_boxes_note
from app.shipment_engine.errors import FailureCode, ProcessingError
from app.shipment_engine.guard import GroupRow, required_prior_stage
from app.shipment_engine.tracker import ImportTracker

logger = logging.getLogger("inbound.shipment_engine.writer")

_shipments = Shipment.__table__
_details = ShipmentDetail.__table__
_imports = ImportRecord.__table__

BOL_STAGES = frozenset({Stage.IN_TRANSIT, Stage.DELIVERED_CONFIRMED})
DELIVERED_STAGES = frozenset({Stage.DELIVERED_PENDING, Stage.DELIVERED_CONFIRMED})


@dataclass
class StageWrite:
    stage: Stage
    shipment_id: int
    shipment_detail_id: int
    already_exists: bool = False
    updated: dict[str, list[str]] = field(default_factory=dict)
    superseded_import_ids: list[int] = field(default_factory=list)


def _same(a: str | None, b: str | None) -> bool:
    return (a or "").strip() == (b or "").strip()


def supersession_applies(acting: CandidateRecord, other: CandidateRecord) -> bool:
    """Whether ``other`` shares the acting record's group keys.

    The shipment number must match; job name, truck and terminal narrow the
    match only when the acting record carries them.
    """
    if not acting.shipment_number or not _same(other.shipment_number, acting.shipment_number):
        return False
    if acting.jobname and not _same(other.jobname, acting.jobname):
        return False
    if acting.truck_number:
        token = acting.truck_number.strip()
        if not (_same(other.truck_number, token) or token in (other.raw_truck or "")):
            return False
    if acting.terminal and not _same(other.terminal, acting.terminal):
        return False
    return True


class ShipmentWriter:
    """Stage-specific writes against shipments / shipment_details."""

    def __init__(self, capabilities: SchemaCapabilities):
        self.capabilities = capabilities
        self.tracker = ImportTracker(capabilities)
        self.normalizer = ImportNormalizer()

    def _supports(self, optional: OptionalField) -> bool:
        return self.capabilities.supports(optional)

    async def find_by_back_reference(
        self, db: AsyncSession, import_id: int
    ) -> tuple[int, int] | None:
        """(shipment id, shipment detail id) already created from this import."""
        row = (await db.execute(
            select(_details.c.shipment_id, _details.c.id)
            .where(
                _details.c.input_method == INPUT_METHOD_IMPORT,
                _details.c.input_id == import_id,
            )
            .order_by(desc(_details.c.id))
            .limit(1)
        )).first()
        if row is None:
            return None
        return row.shipment_id, row.id

    # ── Stage 1 ──

    async def create_at_terminal(
        self, db: AsyncSession, candidate: CandidateRecord, match: RecordMatch
    ) -> StageWrite:
        existing = await self.find_by_back_reference(db, candidate.import_id)
        if existing is not None:
            shipment_id, detail_id = existing
            backfilled = await self.tracker.backfill_if_missing(
                db, candidate.import_id, shipment_id, detail_id
            )
            logger.info(
                "Import %s already created shipment %s (detail %s)",
                candidate.import_id, shipment_id, detail_id,
            )
            return StageWrite(
                Stage.AT_TERMINAL,
                shipment_id,
                detail_id,
                already_exists=True,
                updated={"import_records": backfilled} if backfilled else {},
            )

        identity = match.driver.resolved
        journey = match.journey
        if identity is None or identity.carrier_id is None or journey.join_id is None:
            raise ProcessingError(
                FailureCode.NO_IDENTITY, "Cannot create a shipment without driver, carrier and route leg."
            )

        shipment_values = {
            "carrier_id": identity.carrier_id,
            "contact_id": identity.contact_id,
            "vehicle_id": identity.vehicle_id,
            "route_leg_id": journey.join_id,
            "load_date": candidate.load_date,
            "is_deleted": False,
        }
        result = await db.execute(insert(_shipments).values(**shipment_values))
        shipment_id = result.inserted_primary_key[0]

        detail_values = {
            "shipment_id": shipment_id,
            "input_method": INPUT_METHOD_IMPORT,
            "input_id": candidate.import_id,
            "shipment_number": candidate.shipment_number,
            "truck_number": candidate.truck_number,
            "trailer_number": candidate.trailer_number,
            "miles": journey.miles,
        }
        boxes = candidate.boxes_note
        if boxes and self._supports(OptionalField.DETAIL_NOTES):
            detail_values["notes"] = boxes
        result = await db.execute(insert(_details).values(**detail_values))
        detail_id = result.inserted_primary_key[0]

        tracked = await self.tracker.update_tracking(db, candidate.import_id, shipment_id, detail_id)

        logger.info(
            "Created shipment %s (detail %s) from import %s on route leg %s",
            shipment_id, detail_id, candidate.import_id, journey.join_id,
        )
        updated = {
            "shipments": list(shipment_values),
            "shipment_details": list(detail_values),
        }
        if tracked:
            updated["import_records"] = tracked
        return StageWrite(Stage.AT_TERMINAL, shipment_id, detail_id, updated=updated)

    # ── Stages 2-4 ──

    async def advance(
        self,
        db: AsyncSession,
        stage: Stage,
        candidate: CandidateRecord,
        group: GroupRow | None,
    ) -> StageWrite:
        if stage == Stage.AT_TERMINAL:
            raise ProcessingError(FailureCode.UNKNOWN_STAGE, "AT_TERMINAL is written by create_at_terminal.")
        if group is None:
            prior = required_prior_stage(stage)
            raise ProcessingError(
                FailureCode.MISSING_BASE_RECORD,
                f"No shipment found for shipment number {candidate.shipment_number}; "
                f"{prior.value} must be processed first.",
                required_stage=prior.value,
            )

        shipment_values: dict = {}
        detail_values: dict = {}
        superseded: list[int] = []

        if stage == Stage.IN_TRANSIT:
            await self._merge_boxes(db, group, candidate, detail_values)

        if candidate.ticket_number and self._supports(OptionalField.DETAIL_TICKET_NUMBER):
            detail_values["ticket_number"] = candidate.ticket_number

        weights = candidate.weights
        if weights.net_lbs is not None:
            if self._supports(OptionalField.DETAIL_NET_LBS):
                detail_values["net_lbs"] = int(round(weights.net_lbs))
            if self._supports(OptionalField.DETAIL_TONS):
                detail_values["tons"] = weights.tons

        if stage in DELIVERED_STAGES:
            delivered_at = resolve_delivery_time(True, candidate.payload, candidate.delivery_time)
            if delivered_at is not None:
                if self._supports(OptionalField.SHIPMENT_DELIVERY_TIME):
                    shipment_values["delivery_time"] = delivered_at
                if self._supports(OptionalField.SHIPMENT_DELIVERY_DATE):
                    shipment_values["delivery_date"] = delivered_at.date()
            if self._supports(OptionalField.SHIPMENT_IS_FINISHED):
                shipment_values["is_finished"] = True

        if stage == Stage.DELIVERED_CONFIRMED and self._supports(OptionalField.DETAIL_REVIEW_DATE):
            # Rank 4 is read from review_date; confirmation falls back to the delivery time
            detail_values["review_date"] = (
                review_timestamp(candidate.payload)
                or delivered_at
                or datetime.now(timezone.utc).replace(tzinfo=None)
            )

        if stage in BOL_STAGES and self._bol_writable(candidate):
            detail_values["bol_path"] = candidate.bol.path
            detail_values["bol_type"] = candidate.bol.type
            superseded = await self.supersede_other_attachments(db, candidate)

        if shipment_values:
            await db.execute(
                update(_shipments).where(_shipments.c.id == group.shipment_id).values(**shipment_values)
            )
        if detail_values:
            await db.execute(
                update(_details)
                .where(_details.c.id == group.shipment_detail_id)
                .values(**detail_values)
            )
        tracked = await self.tracker.update_tracking(
            db, candidate.import_id, group.shipment_id, group.shipment_detail_id
        )

        logger.info(
            "Applied %s to shipment %s (detail %s) from import %s",
            stage.value, group.shipment_id, group.shipment_detail_id, candidate.import_id,
        )
        updated = {}
        if shipment_values:
            updated["shipments"] = list(shipment_values)
        if detail_values:
            updated["shipment_details"] = list(detail_values)
        if tracked:
            updated["import_records"] = tracked
        return StageWrite(
            stage,
            group.shipment_id,
            group.shipment_detail_id,
            updated=updated,
            superseded_import_ids=superseded,
        )

    async def _merge_boxes(
        self, db: AsyncSession, group: GroupRow, candidate: CandidateRecord, detail_values: dict
    ) -> None:
        boxes = candidate.boxes_note
        if not boxes or not self._supports(OptionalField.DETAIL_NOTES):
            return
        current = (await db.execute(
            select(_details.c.notes).where(_details.c.id == group.shipment_detail_id)
        )).scalar_one_or_none()
        merged = merge_boxes_note(current, boxes)
        if merged != (current or ""):
            detail_values["notes"] = merged

    def _bol_writable(self, candidate: CandidateRecord) -> bool:
        return (
            candidate.bol.writable
            and self._supports(OptionalField.DETAIL_BOL_PATH)
            and self._supports(OptionalField.DETAIL_BOL_TYPE)
        )

    async def supersede_other_attachments(
        self, db: AsyncSession, acting: CandidateRecord
    ) -> list[int]:
        """Mark attachment references on the acting record's siblings as replaced.

        The acting record itself is never touched. Returns the ids changed.
        """
        attachment_fields = [
            f for f in (OptionalField.IMPORT_IMAGE_PATH, OptionalField.IMPORT_IMAGE_ORIGINAL)
            if self._supports(f)
        ]
        if not attachment_fields or not acting.shipment_number:
            return []

        # Narrow in SQL; supersession_applies() makes the exact decision.
        in_payload = _imports.c.payload_json.contains(acting.shipment_number, autoescape=True)
        if self._supports(OptionalField.IMPORT_SHIPMENT_NUMBER):
            prefilter = or_(_imports.c.shipment_number == acting.shipment_number, in_payload)
        else:
            prefilter = in_payload
        stmt = (
            select(*import_columns(self.capabilities))
            .where(_imports.c.id != acting.import_id, prefilter)
        )

        changed: list[int] = []
        rows = (await db.execute(stmt.order_by(_imports.c.id))).mappings().all()
        for row in rows:
            other = self.normalizer.normalize(row)
            if not supersession_applies(acting, other):
                continue

            values = {}
            for f in attachment_fields:
                current = row[f.column]
                replaced = mark_superseded(current)
                if replaced is not None and replaced != current:
                    values[f.column] = replaced
            if values:
                await db.execute(
                    update(_imports).where(_imports.c.id == row["id"]).values(**values)
                )
                changed.append(row["id"])

        if changed:
            logger.warning(
                "BOL from import %s superseded attachments on imports %s",
                acting.import_id, changed,
            )
        return changed
