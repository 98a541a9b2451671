"""BatchSequencer — replays many import records group by group.

Records are grouped by (route leg, shipment number). Each group keeps one
record per stage rank, the lowest import id winning, and its ranks are
applied in ascending order through the same guarded write as single
processing. The first failure halts only its own group; records whose group
key cannot be resolved are reported as orphans.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.matching_engine.service import blocking_failure
from app.matching_engine.stages import Stage, rank_to_stage
from app.shipment_engine.errors import FailureCode, ProcessingError
from app.shipment_engine.locks import group_key
from app.shipment_engine.service import InboundShipmentService, PreparedRecord, ProcessResult

logger = logging.getLogger("inbound.shipment_engine.batch")

# Failures that leave a record without a usable group key.
GROUPING_FAILURES = frozenset({
    FailureCode.NOT_FOUND,
    FailureCode.JOURNEY_NOT_READY,
    FailureCode.MISSING_KEY,
})


@dataclass
class BatchStep:
    rank: int
    stage: Stage
    import_id: int
    ok: bool
    result: ProcessResult


@dataclass
class GroupTrace:
    group_key: str | None
    join_id: int | None = None
    shipment_number: str | None = None
    initial_rank: int | None = None
    selected_ranks: list[int] = field(default_factory=list)
    steps: list[BatchStep] = field(default_factory=list)
    ok: bool = False
    orphan: ProcessResult | None = None


@dataclass
class BatchResult:
    ok: bool
    import_ids: list[int] = field(default_factory=list)
    groups: int = 0
    ok_groups: int = 0
    fail_groups: int = 0
    results: list[GroupTrace] = field(default_factory=list)
    error: str | None = None


@dataclass
class _Member:
    prepared: PreparedRecord
    failure: ProcessingError | None


def sanitize_import_ids(import_ids, cap: int) -> list[int]:
    """Positive ids, de-duplicated in first-seen order, capped at ``cap``."""
    seen: set[int] = set()
    ids: list[int] = []
    for raw in import_ids or []:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            continue
        if value <= 0 or value in seen:
            continue
        seen.add(value)
        ids.append(value)
    return ids[:cap]


def collapse_by_rank(members: list[_Member]) -> dict[int, _Member]:
    """One member per rank; the lowest import id wins."""
    selected: dict[int, _Member] = {}
    for member in members:
        rank = member.prepared.match.rank
        current = selected.get(rank)
        if current is None or member.prepared.candidate.import_id < current.prepared.candidate.import_id:
            selected[rank] = member
    return selected


class BatchSequencer:
    def __init__(self, settings: Settings, service: InboundShipmentService):
        self.cap = settings.batch_max_import_ids
        self.service = service

    async def process_batch(self, db: AsyncSession, import_ids) -> BatchResult:
        ids = sanitize_import_ids(import_ids, self.cap)
        if not ids:
            return BatchResult(ok=False, error="import_ids must contain at least one valid id")

        groups: dict[str, list[_Member]] = {}
        orphans: list[ProcessResult] = []

        for import_id in ids:
            member = await self._resolve(db, import_id)
            if isinstance(member, ProcessResult):
                orphans.append(member)
                continue
            key = group_key(member.prepared.join_id, member.prepared.shipment_number)
            groups.setdefault(key, []).append(member)

        # Resolution only read; end that transaction before the stage writes.
        await db.rollback()

        results: list[GroupTrace] = []
        ok_groups = 0
        fail_groups = 0

        for key, members in groups.items():
            trace = await self._run_group(db, key, members)
            results.append(trace)
            if trace.ok:
                ok_groups += 1
            else:
                fail_groups += 1

        for orphan in orphans:
            fail_groups += 1
            results.append(GroupTrace(group_key=None, ok=False, orphan=orphan))

        logger.info(
            "Batch of %d imports: %d groups, %d ok, %d failed (%d orphans)",
            len(ids), len(groups), ok_groups, fail_groups, len(orphans),
        )
        return BatchResult(
            ok=fail_groups == 0,
            import_ids=ids,
            groups=len(groups),
            ok_groups=ok_groups,
            fail_groups=fail_groups,
            results=results,
        )

    async def _resolve(self, db: AsyncSession, import_id: int) -> _Member | ProcessResult:
        try:
            candidate = await self.service.load_candidate(db, import_id)
        except ProcessingError as exc:
            return ProcessResult.failed(import_id, exc)

        match = await self.service.matcher.evaluate(db, candidate)
        failure = blocking_failure(match, candidate)
        if failure is not None and (
            failure.code in GROUPING_FAILURES or match.journey.join_id is None
        ):
            return ProcessResult.failed(import_id, failure, match.stage)
        return _Member(PreparedRecord(candidate, match), failure)

    async def _run_group(self, db: AsyncSession, key: str, members: list[_Member]) -> GroupTrace:
        first = members[0].prepared
        selected = collapse_by_rank(members)
        ranks = sorted(selected)

        trace = GroupTrace(
            group_key=key,
            join_id=first.join_id,
            shipment_number=first.shipment_number,
            initial_rank=await self.service.guard.infer_current_rank(
                db, first.join_id, first.shipment_number
            ),
            selected_ranks=ranks,
        )
        await db.rollback()

        for rank in ranks:
            member = selected[rank]
            prepared = member.prepared
            import_id = prepared.candidate.import_id
            stage = rank_to_stage(rank)

            if member.failure is not None:
                result = ProcessResult.failed(import_id, member.failure, stage)
            else:
                try:
                    write, current_rank = await self.service.apply_stage(db, prepared, stage)
                except ProcessingError as exc:
                    result = ProcessResult.failed(import_id, exc, stage)
                else:
                    result = ProcessResult(
                        ok=True,
                        import_id=import_id,
                        stage=write.stage,
                        shipment_id=write.shipment_id,
                        shipment_detail_id=write.shipment_detail_id,
                        already_exists=write.already_exists,
                        updated=write.updated,
                        superseded_import_ids=write.superseded_import_ids,
                        current_rank=current_rank,
                        desired_rank=rank,
                    )

            trace.steps.append(BatchStep(rank, stage, import_id, result.ok, result))
            if not result.ok:
                logger.warning(
                    "Group %s halted at %s (import %s): %s",
                    key, stage.value, import_id, result.error.code.value,
                )
                return trace

        trace.ok = True
        return trace
