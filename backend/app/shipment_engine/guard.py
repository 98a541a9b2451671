"""Stage guard: current rank of a shipment group and the forward-only rule.

The current rank is never stored. It is recomputed from the live shipment
row every time, so a partially written group heals on the next attempt:

    review_date set                          -> 4
    delivery time/date set, or is_finished   -> 3
    net_lbs or tons > 0                      -> 2
    group row exists                         -> 1
    no row                                   -> 0
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy import desc, false, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.capabilities import DELIVERY_FIELDS, WEIGHT_FIELDS, OptionalField, SchemaCapabilities
from app.matching_engine.stages import TERMINAL_STAGE, Stage, rank_to_stage, stage_rank
from app.models.shipment import Shipment, ShipmentDetail
from app.shipment_engine.errors import FailureCode, ProcessingError, Transition

logger = logging.getLogger("inbound.shipment_engine.guard")

_shipments = Shipment.__table__
_details = ShipmentDetail.__table__


@dataclass
class GroupRow:
    shipment_id: int
    shipment_detail_id: int
    values: dict

    def get(self, column: str, default=None):
        return self.values.get(column, default)


def _positive(value) -> bool:
    try:
        return value is not None and float(value) > 0
    except (TypeError, ValueError):
        return False


def rank_from_row(row: Mapping | None) -> int:
    """Derived stage rank of a group row (0 when there is none)."""
    if row is None:
        return 0
    if row.get("review_date") is not None:
        return 4
    if (
        row.get("delivery_time") is not None
        or row.get("delivery_date") is not None
        or bool(row.get("is_finished"))
    ):
        return 3
    if _positive(row.get("net_lbs")) or _positive(row.get("tons")):
        return 2
    return 1


def check_transition(current_rank: int, desired_rank: int) -> None:
    """Raise unless ``desired_rank`` is the one stage allowed next."""
    if current_rank == 0:
        if desired_rank != 1:
            raise ProcessingError(
                FailureCode.NO_BASE_RECORD,
                f"No shipment exists yet; {rank_to_stage(1).value} must be processed first.",
                current_rank=current_rank,
                desired_rank=desired_rank,
            )
        return

    if current_rank >= stage_rank(TERMINAL_STAGE):
        raise ProcessingError(
            FailureCode.INVALID_TRANSITION,
            f"Shipment already reached {TERMINAL_STAGE.value}; no later stage exists.",
            current_rank=current_rank,
            desired_rank=desired_rank,
            transition=Transition.NOT_FORWARD.value,
        )

    if desired_rank == current_rank + 1:
        return

    transition = Transition.NOT_FORWARD if desired_rank <= current_rank else Transition.SKIPPED
    if transition == Transition.NOT_FORWARD:
        message = f"Shipment is already at rank {current_rank}; rank {desired_rank} is not forward."
    else:
        message = (
            f"Cannot skip from rank {current_rank} to {desired_rank}; "
            f"{rank_to_stage(current_rank + 1).value} must be processed first."
        )
    raise ProcessingError(
        FailureCode.INVALID_TRANSITION,
        message,
        current_rank=current_rank,
        desired_rank=desired_rank,
        transition=transition.value,
    )


def required_prior_stage(stage: Stage) -> Stage:
    return rank_to_stage(max(1, stage_rank(stage) - 1))


class StageGuard:
    """Reads the shipment group for a (route leg, shipment number) key."""

    def __init__(self, capabilities: SchemaCapabilities):
        self.capabilities = capabilities

    def _rank_columns(self) -> list:
        cols = []
        for f in self.capabilities.supported(DELIVERY_FIELDS + (OptionalField.SHIPMENT_IS_FINISHED,)):
            cols.append(_shipments.c[f.column])
        for f in self.capabilities.supported(WEIGHT_FIELDS + (OptionalField.DETAIL_REVIEW_DATE,)):
            cols.append(_details.c[f.column])
        return cols

    async def find_group_row(
        self,
        db: AsyncSession,
        join_id: int,
        shipment_number: str,
        *,
        for_update: bool = False,
    ) -> GroupRow | None:
        """Most recent shipment detail for the group, with its rank columns."""
        stmt = (
            select(
                _shipments.c.id.label("shipment_id"),
                _details.c.id.label("shipment_detail_id"),
                *self._rank_columns(),
            )
            .select_from(_details.join(_shipments, _details.c.shipment_id == _shipments.c.id))
            .where(
                _shipments.c.route_leg_id == join_id,
                _shipments.c.is_deleted == false(),
                _details.c.shipment_number == shipment_number,
            )
            .order_by(desc(_details.c.id))
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()

        row = (await db.execute(stmt)).mappings().first()
        if row is None:
            return None
        values = dict(row)
        return GroupRow(values["shipment_id"], values["shipment_detail_id"], values)

    async def infer_current_rank(
        self,
        db: AsyncSession,
        join_id: int,
        shipment_number: str,
        *,
        for_update: bool = False,
    ) -> int:
        row = await self.find_group_row(db, join_id, shipment_number, for_update=for_update)
        rank = rank_from_row(row)
        logger.debug("Group %s|%s current rank=%d", join_id, shipment_number, rank)
        return rank
