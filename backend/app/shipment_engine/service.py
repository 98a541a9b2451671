"""InboundShipmentService — review queue and strict single-record processing.

Processing flow for one import record:
1. Load and normalize the row (NOT_FOUND if missing)
2. Evaluate driver / route / stage matches
3. Stop on the first blocking failure
4. Take the per-group lock
5. Stage 1 only: return early if this import already created a shipment
6. Recompute the group's current rank and apply the forward-only guard
7. Write the stage and commit; roll back on any failure
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import desc, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.capabilities import SchemaCapabilities
from app.config import Settings
from app.freight_import.normalizer import CandidateRecord, ImportNormalizer, import_columns
from app.matching_engine.drivers import Confidence
from app.matching_engine.service import MatchEngine, RecordMatch, blocking_failure
from app.matching_engine.stages import Stage, stage_rank
from app.models.import_record import ImportRecord
from app.shipment_engine.errors import FailureCode, ProcessingError
from app.shipment_engine.guard import StageGuard, check_transition, rank_from_row
from app.shipment_engine.locks import GroupLocks, group_locks
from app.shipment_engine.writer import ShipmentWriter, StageWrite

logger = logging.getLogger("inbound.shipment_engine")

_imports = ImportRecord.__table__

QUEUE_FILTERS = ("unprocessed", "processed", "all")


@dataclass
class ProcessResult:
    ok: bool
    import_id: int
    stage: Stage | None = None
    shipment_id: int | None = None
    shipment_detail_id: int | None = None
    already_exists: bool = False
    updated: dict[str, list[str]] = field(default_factory=dict)
    superseded_import_ids: list[int] = field(default_factory=list)
    current_rank: int | None = None
    desired_rank: int | None = None
    error: ProcessingError | None = None

    @classmethod
    def failed(
        cls, import_id: int, error: ProcessingError, stage: Stage | None = None
    ) -> "ProcessResult":
        return cls(
            ok=False,
            import_id=import_id,
            stage=stage,
            current_rank=error.details.get("current_rank"),
            desired_rank=error.details.get("desired_rank"),
            error=error,
        )


@dataclass
class Readiness:
    current_rank: int | None
    is_next_stage: bool
    blocking_code: FailureCode | None = None
    blocking_message: str | None = None


@dataclass
class QueueItem:
    candidate: CandidateRecord
    match: RecordMatch
    readiness: Readiness
    is_processed: bool
    processed_shipment_id: int | None = None
    processed_shipment_detail_id: int | None = None


@dataclass
class PreparedRecord:
    """A loaded, matched record that cleared the blocking checks."""

    candidate: CandidateRecord
    match: RecordMatch

    @property
    def join_id(self) -> int:
        return self.match.journey.join_id

    @property
    def shipment_number(self) -> str:
        return self.candidate.shipment_number


class InboundShipmentService:
    """Review queue listing and strict, forward-only stage processing."""

    def __init__(
        self,
        settings: Settings,
        capabilities: SchemaCapabilities,
        locks: GroupLocks | None = None,
    ):
        self.settings = settings
        self.capabilities = capabilities
        self.normalizer = ImportNormalizer()
        self.matcher = MatchEngine(settings)
        self.guard = StageGuard(capabilities)
        self.writer = ShipmentWriter(capabilities)
        self.locks = locks or group_locks

    # ── Loading ──

    async def load_candidate(self, db: AsyncSession, import_id: int) -> CandidateRecord:
        row = (await db.execute(
            select(*import_columns(self.capabilities)).where(_imports.c.id == import_id)
        )).mappings().first()
        if row is None:
            raise ProcessingError(FailureCode.NOT_FOUND, f"Import id={import_id} not found.")
        return self.normalizer.normalize(row)

    async def prepare(self, db: AsyncSession, import_id: int) -> PreparedRecord:
        """Load, match and check an import record. Raises on blocking failures."""
        candidate = await self.load_candidate(db, import_id)
        match = await self.matcher.evaluate(db, candidate)
        failure = blocking_failure(match, candidate)
        if failure is not None:
            raise failure
        return PreparedRecord(candidate, match)

    # ── Strict processing ──

    async def process_import(self, db: AsyncSession, import_id: int) -> ProcessResult:
        stage: Stage | None = None
        try:
            prepared = await self.prepare(db, import_id)
            stage = prepared.match.stage
            write, current_rank = await self.apply_stage(db, prepared, stage)
        except ProcessingError as exc:
            await db.rollback()
            logger.warning("Import %s not processed: %s %s", import_id, exc.code.value, exc.message)
            return ProcessResult.failed(import_id, exc, stage)

        return ProcessResult(
            ok=True,
            import_id=import_id,
            stage=write.stage,
            shipment_id=write.shipment_id,
            shipment_detail_id=write.shipment_detail_id,
            already_exists=write.already_exists,
            updated=write.updated,
            superseded_import_ids=write.superseded_import_ids,
            current_rank=current_rank,
            desired_rank=prepared.match.rank,
        )

    async def apply_stage(
        self, db: AsyncSession, prepared: PreparedRecord, stage: Stage
    ) -> tuple[StageWrite, int]:
        """Guarded write of one stage in its own transaction.

        Returns the write and the rank the group had before it. The group lock
        spans rank recomputation, the guard and the write; commit or rollback
        releases it.
        """
        candidate = prepared.candidate
        desired_rank = stage_rank(stage)

        async with self.locks.hold(db, prepared.join_id, prepared.shipment_number):
            try:
                group = await self.guard.find_group_row(
                    db, prepared.join_id, prepared.shipment_number, for_update=True
                )
                current_rank = rank_from_row(group)

                if stage == Stage.AT_TERMINAL:
                    existing = await self.writer.find_by_back_reference(db, candidate.import_id)
                    if existing is not None:
                        write = await self.writer.create_at_terminal(db, candidate, prepared.match)
                        await db.commit()
                        return write, current_rank

                check_transition(current_rank, desired_rank)

                if stage == Stage.AT_TERMINAL:
                    write = await self.writer.create_at_terminal(db, candidate, prepared.match)
                else:
                    write = await self.writer.advance(db, stage, candidate, group)
                await db.commit()
            except ProcessingError:
                await db.rollback()
                raise
            except SQLAlchemyError as exc:
                await db.rollback()
                logger.exception("Stage %s write failed for import %s", stage.value, candidate.import_id)
                raise ProcessingError(
                    FailureCode.WRITE_FAILED,
                    f"Database error while writing {stage.value}: {exc.__class__.__name__}",
                ) from exc

        return write, current_rank

    # ── Review queue ──

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            limit = self.settings.queue_default_limit
        return max(1, min(int(limit), self.settings.queue_max_limit))

    async def list_queue(
        self,
        db: AsyncSession,
        *,
        limit: int | None = None,
        only: str = "unprocessed",
        q: str | None = None,
        confidence: Confidence | None = None,
    ) -> list[QueueItem]:
        """Newest import records with their match bundle and readiness.

        ``limit`` bounds the rows read; the ``only`` / ``q`` / ``confidence``
        filters then narrow that window. Records never fail here: unresolved
        matches are listed as RED / NONE.
        """
        if only not in QUEUE_FILTERS:
            only = "unprocessed"
        needle = (q or "").strip().lower()

        rows = (await db.execute(
            select(*import_columns(self.capabilities))
            .order_by(desc(_imports.c.id))
            .limit(self.clamp_limit(limit))
        )).mappings().all()

        items: list[QueueItem] = []
        for row in rows:
            candidate = self.normalizer.normalize(row)

            back_ref = await self.writer.find_by_back_reference(db, candidate.import_id)
            if back_ref is not None:
                await self.writer.tracker.backfill_if_missing(db, candidate.import_id, *back_ref)

            is_processed = (
                back_ref is not None
                or bool(candidate.is_inserted)
                or candidate.linked_shipment_id is not None
            )
            if only == "unprocessed" and is_processed:
                continue
            if only == "processed" and not is_processed:
                continue
            if needle and needle not in candidate.search_text():
                continue

            match = await self.matcher.evaluate(db, candidate)
            if confidence is not None and match.confidence != confidence:
                continue

            items.append(QueueItem(
                candidate=candidate,
                match=match,
                readiness=await self.readiness(db, candidate, match),
                is_processed=is_processed,
                processed_shipment_id=back_ref[0] if back_ref else candidate.linked_shipment_id,
                processed_shipment_detail_id=(
                    back_ref[1] if back_ref else candidate.linked_shipment_detail_id
                ),
            ))

        logger.info("Review queue: %d of %d records listed (only=%s)", len(items), len(rows), only)
        return items

    async def readiness(
        self, db: AsyncSession, candidate: CandidateRecord, match: RecordMatch
    ) -> Readiness:
        current_rank = None
        if match.journey.join_id is not None and candidate.shipment_number:
            current_rank = await self.guard.infer_current_rank(
                db, match.journey.join_id, candidate.shipment_number
            )

        failure = blocking_failure(match, candidate)
        if failure is None and current_rank is not None:
            try:
                check_transition(current_rank, match.rank)
            except ProcessingError as exc:
                failure = exc

        if failure is not None:
            return Readiness(current_rank, False, failure.code, failure.message)
        return Readiness(current_rank, True)
