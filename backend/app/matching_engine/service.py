"""
Record matching service.

Composes driver resolution, route resolution and stage classification to
answer: can this import record be processed, and to which stage?
"""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.freight_import.normalizer import CandidateRecord
from app.matching_engine.drivers import (
    Confidence,
    DriverMatch,
    DriverResolver,
    compute_confidence,
)
from app.matching_engine.routes import (
    Journey,
    JourneyStatus,
    LocationMatch,
    LocationMatchStatus,
    RouteResolver,
)
from app.matching_engine.stages import Stage, classify, stage_rank
from app.shipment_engine.errors import FailureCode, ProcessingError

logger = logging.getLogger("inbound.matching_engine")


@dataclass
class RecordMatch:
    """Everything the matcher knows about one import record."""

    driver: DriverMatch
    confidence: Confidence
    pull_point: LocationMatch
    pad_location: LocationMatch
    journey: Journey
    stage: Stage
    rank: int

    @property
    def join_id(self) -> int | None:
        return self.journey.join_id


def blocking_failure(match: RecordMatch, candidate: CandidateRecord) -> ProcessingError | None:
    """First failure a processing attempt would hit, or None if it may proceed."""
    if match.journey.status != JourneyStatus.READY or match.journey.join_id is None:
        if LocationMatchStatus.MULTI in (match.pull_point.status, match.pad_location.status):
            return ProcessingError(
                FailureCode.AMBIGUOUS_MATCH,
                "Terminal or jobname matches more than one location.",
                journey_status=match.journey.status.value,
            )
        return ProcessingError(
            FailureCode.JOURNEY_NOT_READY,
            f"Route leg not resolved ({match.journey.method}).",
            journey_status=match.journey.status.value,
        )

    if not candidate.shipment_number:
        return ProcessingError(FailureCode.MISSING_KEY, "Import record has no shipment number.")

    resolved = match.driver.resolved
    if resolved is None:
        if match.driver.name_ambiguous:
            return ProcessingError(
                FailureCode.AMBIGUOUS_MATCH,
                "Driver name matches more than one contact and no truck identity was found.",
            )
        return ProcessingError(FailureCode.NO_IDENTITY, "Driver/vehicle could not be resolved.")

    if resolved.carrier_id is None:
        return ProcessingError(
            FailureCode.NO_IDENTITY,
            f"Driver {resolved.driver_id} has no carrier.",
            driver_id=resolved.driver_id,
        )

    return None


class MatchEngine:
    """Evaluates candidate records against the reference data."""

    def __init__(self, settings: Settings):
        self.drivers = DriverResolver(settings)
        self.routes = RouteResolver(settings)

    async def evaluate(self, db: AsyncSession, candidate: CandidateRecord) -> RecordMatch:
        driver = await self.drivers.match_driver(
            db, candidate.driver_name, candidate.truck_number
        )
        pull_point = await self.routes.match_pull_point(db, candidate.terminal)
        pad_location = await self.routes.match_pad_location(db, candidate.jobname)
        journey = await self.routes.build_journey(db, pull_point, pad_location)

        stage = classify(candidate.status_text, candidate.reconcile_flag)

        match = RecordMatch(
            driver=driver,
            confidence=compute_confidence(driver),
            pull_point=pull_point,
            pad_location=pad_location,
            journey=journey,
            stage=stage,
            rank=stage_rank(stage),
        )
        logger.debug(
            "Import %s evaluated: driver=%s journey=%s stage=%s",
            candidate.import_id, driver.status.value, journey.status.value, stage.value,
        )
        return match
