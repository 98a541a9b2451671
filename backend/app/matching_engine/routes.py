"""Route-leg resolution: terminal text -> pull point, job name -> pad location,
then the route leg (join) connecting the two.

A side that matches more than one location is reported as MULTI and treated
as unresolved; it is never picked arbitrarily.
"""

import enum
import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import String, false, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.matching_engine.text import str_or_none
from app.models.fleet import PadLocation, PullPoint, RouteLeg

logger = logging.getLogger("inbound.matching_engine.routes")

_SPACE_RE = re.compile(r"\s+", re.UNICODE)
_DASH_RE = re.compile(r"\s*-\s*")
_SLASH_RE = re.compile(r"\s*/\s*", re.UNICODE)


class LocationMatchStatus(str, enum.Enum):
    ONE = "ONE"
    MULTI = "MULTI"
    NONE = "NONE"


class JourneyStatus(str, enum.Enum):
    READY = "READY"
    MISSING_JOIN = "MISSING_JOIN"
    PARTIAL = "PARTIAL"
    NONE = "NONE"


@dataclass
class LocationRef:
    id: int
    name: str
    method: str | None = None


@dataclass
class LocationMatch:
    status: LocationMatchStatus
    resolved: LocationRef | None = None
    candidates: list[LocationRef] = field(default_factory=list)
    notes: str = ""


@dataclass
class Journey:
    status: JourneyStatus
    pull_point_id: int | None = None
    pad_location_id: int | None = None
    join_id: int | None = None
    miles: int | None = None
    method: str = "NONE"


def normalize_terminal(text: str) -> str:
    """``"  Yard  A - North "`` -> ``"yard a-north"``."""
    t = _SPACE_RE.sub(" ", text.strip().lower())
    return _DASH_RE.sub("-", t)


def normalize_jobname(text: str) -> tuple[str, str]:
    """Return (whitespace-collapsed, slash-tightened) job name forms."""
    n = _SPACE_RE.sub(" ", text.strip().lower())
    return n, _SLASH_RE.sub("/", n)


def _lower_trim(column):
    return func.lower(func.trim(column, type_=String), type_=String)


def _from_candidates(
    rows: list, method: str, multi_note: str, none_note: str
) -> LocationMatch:
    if len(rows) == 1:
        return LocationMatch(
            LocationMatchStatus.ONE, LocationRef(rows[0].id, rows[0].name, method)
        )
    if len(rows) > 1:
        return LocationMatch(
            LocationMatchStatus.MULTI,
            None,
            [LocationRef(r.id, r.name) for r in rows],
            multi_note,
        )
    return LocationMatch(LocationMatchStatus.NONE, notes=none_note)


class RouteResolver:
    """Looks up pull points, pad locations and the route leg between them."""

    def __init__(self, settings: Settings):
        self.candidate_limit = settings.location_candidate_limit

    async def match_pull_point(self, db: AsyncSession, terminal: str | None) -> LocationMatch:
        terminal = str_or_none(terminal)
        if not terminal:
            return LocationMatch(LocationMatchStatus.NONE, notes="No terminal in import.")

        t = normalize_terminal(terminal)

        name_expr = func.lower(
            func.replace(
                func.replace(func.trim(PullPoint.name, type_=String), " - ", "-", type_=String),
                " -", "-", type_=String,
            ),
            type_=String,
        )
        exact = (await db.execute(
            select(PullPoint.id, PullPoint.name)
            .where(PullPoint.is_deleted == false(), name_expr == t)
            .order_by(PullPoint.id)
            .limit(1)
        )).first()
        if exact:
            return LocationMatch(
                LocationMatchStatus.ONE, LocationRef(exact.id, exact.name, "NORMALIZED_EXACT")
            )

        rows = (await db.execute(
            select(PullPoint.id, PullPoint.name)
            .where(
                PullPoint.is_deleted == false(),
                _lower_trim(PullPoint.name).contains(t, autoescape=True),
            )
            .order_by(PullPoint.id)
            .limit(self.candidate_limit)
        )).all()
        return _from_candidates(
            rows, "LIKE_UNIQUE", "Multiple pull points match.", "No pull point match found."
        )

    async def match_pad_location(self, db: AsyncSession, jobname: str | None) -> LocationMatch:
        jobname = str_or_none(jobname)
        if not jobname:
            return LocationMatch(LocationMatchStatus.NONE, notes="No jobname in import.")

        n, loose = normalize_jobname(jobname)
        name_expr = _lower_trim(PadLocation.name)
        loose_expr = func.replace(
            func.replace(name_expr, " /", "/", type_=String), "/ ", "/", type_=String
        )

        exact = (await db.execute(
            select(PadLocation.id, PadLocation.name)
            .where(PadLocation.is_deleted == false(), or_(name_expr == n, loose_expr == loose))
            .order_by(PadLocation.id)
            .limit(1)
        )).first()
        if exact:
            return LocationMatch(
                LocationMatchStatus.ONE, LocationRef(exact.id, exact.name, "EXACT")
            )

        # Either side may contain the other.
        wrapped = literal("%").concat(name_expr).concat("%")
        loose_wrapped = literal("%").concat(loose_expr).concat("%")
        rows = (await db.execute(
            select(PadLocation.id, PadLocation.name)
            .where(
                PadLocation.is_deleted == false(),
                or_(
                    name_expr.contains(n, autoescape=True),
                    loose_expr.contains(loose, autoescape=True),
                    literal(n, String).like(wrapped),
                    literal(loose, String).like(loose_wrapped),
                ),
            )
            .order_by(PadLocation.id)
            .limit(self.candidate_limit)
        )).all()
        return _from_candidates(
            rows,
            "LIKE_UNIQUE",
            "Jobname ambiguous: multiple pad location matches.",
            "No pad location match found.",
        )

    async def build_journey(
        self, db: AsyncSession, pull_point: LocationMatch, pad_location: LocationMatch
    ) -> Journey:
        pp = pull_point.resolved
        pl = pad_location.resolved

        if pp is None or pl is None:
            status = JourneyStatus.PARTIAL if (pp or pl) else JourneyStatus.NONE
            return Journey(
                status,
                pull_point_id=pp.id if pp else None,
                pad_location_id=pl.id if pl else None,
                method=status.value,
            )

        leg = (await db.execute(
            select(RouteLeg.id, RouteLeg.miles)
            .where(
                RouteLeg.is_deleted == false(),
                RouteLeg.pull_point_id == pp.id,
                RouteLeg.pad_location_id == pl.id,
            )
            .order_by(RouteLeg.id)
            .limit(1)
        )).first()

        if leg:
            return Journey(
                JourneyStatus.READY,
                pull_point_id=pp.id,
                pad_location_id=pl.id,
                join_id=leg.id,
                miles=leg.miles,
                method="JOIN_LOOKUP(pp,pl)",
            )

        logger.debug("No route leg for pull_point=%s pad_location=%s", pp.id, pl.id)
        return Journey(
            JourneyStatus.MISSING_JOIN,
            pull_point_id=pp.id,
            pad_location_id=pl.id,
            method="JOIN_NOT_FOUND",
        )
