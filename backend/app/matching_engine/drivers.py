"""Driver/vehicle resolution from free-text driver names and truck tokens.

Two independent paths are tried and then combined:

* name path — exact normalized full name, else a unique substring match,
  else a Soundex-bucketed candidate pool scored by Levenshtein distance;
* truck path — exact normalized match of the token against a vehicle's
  number or name, then that vehicle's driver.
"""

import enum
import logging
from dataclasses import dataclass, field

from sqlalchemy import String, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.matching_engine.text import name_distance, norm, norm_truck, soundex, split_name
from app.models.fleet import Contact, Driver, Vehicle

logger = logging.getLogger("inbound.matching_engine.drivers")


class DriverMatchStatus(str, enum.Enum):
    CONFIRMED = "CONFIRMED"
    CONFLICT = "CONFLICT"
    NAME_ONLY = "NAME_ONLY"
    TRUCK_ONLY = "TRUCK_ONLY"
    NONE = "NONE"


class Confidence(str, enum.Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"


class NameMethod(str, enum.Enum):
    EXACT = "NAME_EXACT"
    LIKE_UNIQUE = "NAME_LIKE_UNIQUE"
    FUZZY = "NAME_FUZZY"
    NONE = "NAME_NONE"


@dataclass
class DriverIdentity:
    method: str
    driver_id: int
    contact_id: int
    vehicle_id: int | None = None
    carrier_id: int | None = None


@dataclass
class DriverMatch:
    status: DriverMatchStatus
    resolved: DriverIdentity | None = None
    by_name: DriverIdentity | None = None
    by_truck: DriverIdentity | None = None
    notes: str = ""
    name_ambiguous: bool = False


@dataclass
class NameCandidate:
    contact_id: int
    first_name: str | None
    last_name: str | None

    @property
    def full_name(self) -> str:
        return f"{(self.first_name or '').strip()} {(self.last_name or '').strip()}".strip()


@dataclass
class NameLookup:
    contact_id: int | None
    method: NameMethod
    note: str = ""
    ambiguous: bool = False


@dataclass
class FuzzyPick:
    candidate: NameCandidate | None
    best_distance: int | None = None
    runner_up_distance: int | None = None
    scores: list[tuple[int, int]] = field(default_factory=list)


# ── Pure functions ──


def pick_fuzzy_candidate(
    driver_name: str,
    pool: list[NameCandidate],
    max_distance: int = 2,
    min_gap: int = 1,
) -> FuzzyPick:
    """Score a candidate pool and accept the best only if it is clearly best.

    The best distance must be <= ``max_distance`` and the runner-up must be
    worse by at least ``min_gap``.
    """
    best: NameCandidate | None = None
    best_score: int | None = None
    second_score: int | None = None
    scores: list[tuple[int, int]] = []

    for cand in pool:
        score = name_distance(driver_name, cand.full_name)
        scores.append((cand.contact_id, score))
        if best_score is None or score < best_score:
            second_score = best_score
            best_score = score
            best = cand
        elif second_score is None or score < second_score:
            second_score = score

    if best is None or best_score is None or best_score > max_distance:
        return FuzzyPick(None, best_score, second_score, scores)

    if second_score is not None and (second_score - best_score) < min_gap:
        return FuzzyPick(None, best_score, second_score, scores)

    return FuzzyPick(best, best_score, second_score, scores)


def combine_driver_matches(
    by_name: DriverIdentity | None,
    by_truck: DriverIdentity | None,
    notes: list[str] | None = None,
    name_ambiguous: bool = False,
) -> DriverMatch:
    """Combine the name and truck paths into one verdict."""
    notes = [n for n in (notes or []) if n]

    if by_name and by_truck:
        if by_name.driver_id == by_truck.driver_id:
            resolved = DriverIdentity(
                method=f"{by_name.method}+TRUCK",
                driver_id=by_name.driver_id,
                contact_id=by_name.contact_id,
                vehicle_id=by_name.vehicle_id,
                carrier_id=by_name.carrier_id,
            )
            return DriverMatch(
                DriverMatchStatus.CONFIRMED, resolved, by_name, by_truck, " ".join(notes)
            )

        notes.append(
            f"Conflict: name matched driver {by_name.driver_id} "
            f"but truck matched driver {by_truck.driver_id}."
        )
        return DriverMatch(DriverMatchStatus.CONFLICT, by_name, by_name, by_truck, " ".join(notes))

    if by_name:
        return DriverMatch(DriverMatchStatus.NAME_ONLY, by_name, by_name, None, " ".join(notes))

    if by_truck:
        return DriverMatch(DriverMatchStatus.TRUCK_ONLY, by_truck, None, by_truck, " ".join(notes))

    return DriverMatch(
        DriverMatchStatus.NONE, None, None, None, " ".join(notes), name_ambiguous=name_ambiguous
    )


def compute_confidence(match: DriverMatch) -> Confidence:
    if match.status == DriverMatchStatus.CONFIRMED:
        return Confidence.GREEN
    if match.status in (
        DriverMatchStatus.NAME_ONLY,
        DriverMatchStatus.TRUCK_ONLY,
        DriverMatchStatus.CONFLICT,
    ):
        return Confidence.YELLOW
    return Confidence.RED


# ── Database-backed resolver ──


def _full_name_expr():
    first = func.trim(func.coalesce(Contact.first_name, ""), type_=String)
    last = func.trim(func.coalesce(Contact.last_name, ""), type_=String)
    return func.lower(func.trim(first.concat(" ").concat(last), type_=String), type_=String)


def _lower_trim(column):
    return func.lower(func.trim(column, type_=String), type_=String)


class DriverResolver:
    """Resolves driver identities against contacts, drivers and vehicles."""

    def __init__(self, settings: Settings):
        self.max_distance = settings.driver_fuzzy_max_distance
        self.min_gap = settings.driver_fuzzy_min_gap
        self.like_limit = settings.driver_like_limit
        self.pool_size = settings.driver_fuzzy_pool_size

    async def match_driver(
        self,
        db: AsyncSession,
        driver_name: str | None,
        truck_token: str | None,
    ) -> DriverMatch:
        notes: list[str] = []
        by_name: DriverIdentity | None = None
        by_truck: DriverIdentity | None = None
        name_ambiguous = False

        if driver_name:
            lookup = await self.find_contact_for_name(db, driver_name)
            notes.append(lookup.note)
            name_ambiguous = lookup.ambiguous
            if lookup.contact_id is not None:
                by_name = await self._driver_for_contact(db, lookup.contact_id, lookup.method.value)
                if by_name is None:
                    notes.append(
                        f"Contact matched by name but no driver row found for contact_id={lookup.contact_id}."
                    )

        if truck_token:
            by_truck = await self._driver_for_truck(db, truck_token)

        match = combine_driver_matches(by_name, by_truck, notes, name_ambiguous)
        logger.debug(
            "Driver match name=%r truck=%r -> %s", driver_name, truck_token, match.status.value
        )
        return match

    async def find_contact_for_name(self, db: AsyncSession, driver_name: str) -> NameLookup:
        norm_full = norm(driver_name)
        full_expr = _full_name_expr()

        if norm_full:
            exact = (await db.execute(
                select(Contact.id).where(full_expr == norm_full).order_by(Contact.id).limit(1)
            )).scalar_one_or_none()
            if exact is not None:
                return NameLookup(exact, NameMethod.EXACT)

        like_ids: list[int] = []
        if norm_full:
            like_ids = list((await db.execute(
                select(Contact.id)
                .where(full_expr.contains(norm_full, autoescape=True))
                .order_by(Contact.id)
                .limit(self.like_limit)
            )).scalars().all())
            if len(like_ids) == 1:
                return NameLookup(like_ids[0], NameMethod.LIKE_UNIQUE)

        first, last = split_name(driver_name)
        first_n = norm(first) if first else ""
        last_n = norm(last) if last else ""

        if not first_n and not last_n:
            return NameLookup(None, NameMethod.NONE, "Driver name is empty after normalization.")

        pool = await self._soundex_pool(db, first_n, last_n)
        if not pool and first_n:
            pool = await self._first_name_prefix_pool(db, first_n)

        ambiguous_note = NameLookup(
            None, NameMethod.NONE, "Driver name ambiguous (multiple contacts match).", ambiguous=True
        )
        not_found_note = NameLookup(None, NameMethod.NONE, "No contact match found by exact/like/fuzzy.")

        if not pool:
            return ambiguous_note if len(like_ids) > 1 else not_found_note

        # Score "First Last" so "Last, First" input compares like-for-like
        query_name = " ".join(p for p in (first, last) if p)
        pick = pick_fuzzy_candidate(query_name, pool, self.max_distance, self.min_gap)
        if pick.candidate is not None:
            return NameLookup(
                pick.candidate.contact_id,
                NameMethod.FUZZY,
                f"Fuzzy name match used (distance={pick.best_distance}).",
            )

        if len(like_ids) > 1:
            return ambiguous_note
        if (
            pick.best_distance is not None
            and pick.best_distance <= self.max_distance
            and pick.runner_up_distance is not None
        ):
            # Two or more candidates are equally close.
            return NameLookup(
                None,
                NameMethod.NONE,
                f"Driver name ambiguous (fuzzy tie at distance={pick.best_distance}).",
                ambiguous=True,
            )
        return not_found_note

    async def _soundex_pool(
        self, db: AsyncSession, first_n: str, last_n: str
    ) -> list[NameCandidate]:
        """Contacts whose last name (or first name, if no last) sounds alike."""
        key = last_n or first_n
        code = soundex(key)
        if not code:
            return []

        column = Contact.last_name if last_n else Contact.first_name
        # Soundex keeps the first letter, so filter on it in SQL and finish in Python.
        rows = (await db.execute(
            select(Contact.id, Contact.first_name, Contact.last_name)
            .where(func.lower(func.substr(func.trim(column), 1, 1), type_=String) == code[0].lower())
            .order_by(Contact.id)
        )).all()

        pool: list[NameCandidate] = []
        for row in rows:
            value = row.last_name if last_n else row.first_name
            if value and soundex(value) == code:
                pool.append(NameCandidate(row.id, row.first_name, row.last_name))
                if len(pool) >= self.pool_size:
                    break
        return pool

    async def _first_name_prefix_pool(self, db: AsyncSession, first_n: str) -> list[NameCandidate]:
        rows = (await db.execute(
            select(Contact.id, Contact.first_name, Contact.last_name)
            .where(_lower_trim(Contact.first_name).startswith(first_n[:4], autoescape=True))
            .order_by(Contact.id)
            .limit(self.pool_size)
        )).all()
        return [NameCandidate(r.id, r.first_name, r.last_name) for r in rows]

    async def _driver_for_contact(
        self, db: AsyncSession, contact_id: int, method: str
    ) -> DriverIdentity | None:
        drv = (await db.execute(
            select(Driver).where(Driver.contact_id == contact_id).order_by(Driver.id).limit(1)
        )).scalar_one_or_none()
        if drv is None:
            return None
        return DriverIdentity(
            method=method,
            driver_id=drv.id,
            contact_id=drv.contact_id,
            vehicle_id=drv.vehicle_id,
            carrier_id=drv.carrier_id,
        )

    async def _driver_for_truck(self, db: AsyncSession, truck_token: str) -> DriverIdentity | None:
        token = norm_truck(truck_token)
        if not token:
            return None

        vehicle_id = (await db.execute(
            select(Vehicle.id)
            .where(
                (_lower_trim(Vehicle.vehicle_number) == token)
                | (_lower_trim(Vehicle.vehicle_name) == token)
            )
            .order_by(Vehicle.id)
            .limit(1)
        )).scalar_one_or_none()
        if vehicle_id is None:
            return None

        drv = (await db.execute(
            select(Driver).where(Driver.vehicle_id == vehicle_id).order_by(Driver.id).limit(1)
        )).scalar_one_or_none()
        if drv is None:
            return None

        return DriverIdentity(
            method="TRUCK",
            driver_id=drv.id,
            contact_id=drv.contact_id,
            vehicle_id=drv.vehicle_id,
            carrier_id=drv.carrier_id,
        )
