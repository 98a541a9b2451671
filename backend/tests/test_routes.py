"""Tests for pull point / pad location / route leg resolution."""

import pytest

from app.matching_engine.routes import (
    Journey,
    JourneyStatus,
    LocationMatch,
    LocationMatchStatus,
    LocationRef,
    RouteResolver,
    normalize_jobname,
    normalize_terminal,
)
from app.models import PadLocation, PullPoint


class TestNormalization:
    def test_terminal_collapses_spaces_and_dashes(self):
        assert normalize_terminal("  Yard  B -  North ") == "yard b-north"

    def test_jobname_forms(self):
        assert normalize_jobname(" Site 10  /  East ") == ("site 10 / east", "site 10/east")


@pytest.fixture
def resolver(test_settings) -> RouteResolver:
    return RouteResolver(test_settings)


class TestMatchPullPoint:
    @pytest.mark.asyncio
    async def test_exact(self, db_session, seeded, resolver):
        match = await resolver.match_pull_point(db_session, "yard a")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.id == seeded["yard_a_id"]
        assert match.resolved.method == "NORMALIZED_EXACT"

    @pytest.mark.asyncio
    async def test_dash_spacing_ignored(self, db_session, seeded, resolver):
        match = await resolver.match_pull_point(db_session, " Yard  B-north ")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.name == "Yard B - North"

    @pytest.mark.asyncio
    async def test_multiple_candidates_are_unresolved(self, db_session, seeded, resolver):
        match = await resolver.match_pull_point(db_session, "Yard B")
        assert match.status == LocationMatchStatus.MULTI
        assert match.resolved is None
        assert {c.name for c in match.candidates} == {"Yard B - North", "Yard B - South"}

    @pytest.mark.asyncio
    async def test_unknown(self, db_session, seeded, resolver):
        match = await resolver.match_pull_point(db_session, "Depot 12")
        assert match.status == LocationMatchStatus.NONE
        assert match.notes == "No pull point match found."

    @pytest.mark.asyncio
    async def test_blank(self, db_session, seeded, resolver):
        match = await resolver.match_pull_point(db_session, "   ")
        assert match.status == LocationMatchStatus.NONE
        assert match.notes == "No terminal in import."

    @pytest.mark.asyncio
    async def test_deleted_rows_ignored(self, db_session, seeded, resolver):
        db_session.add(PullPoint(name="Quarry C", is_deleted=True))
        await db_session.commit()

        match = await resolver.match_pull_point(db_session, "Quarry C")
        assert match.status == LocationMatchStatus.NONE


class TestMatchPadLocation:
    @pytest.mark.asyncio
    async def test_exact(self, db_session, seeded, resolver):
        match = await resolver.match_pad_location(db_session, "SITE 9")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.id == seeded["site_9_id"]
        assert match.resolved.method == "EXACT"

    @pytest.mark.asyncio
    async def test_slash_spacing_ignored(self, db_session, seeded, resolver):
        match = await resolver.match_pad_location(db_session, "Site 10/East")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.id == seeded["site_10_id"]

    @pytest.mark.asyncio
    async def test_jobname_contains_location_name(self, db_session, seeded, resolver):
        match = await resolver.match_pad_location(db_session, "Site 9 - Frac Pad 3")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.id == seeded["site_9_id"]
        assert match.resolved.method == "LIKE_UNIQUE"

    @pytest.mark.asyncio
    async def test_location_name_contains_jobname(self, db_session, seeded, resolver):
        match = await resolver.match_pad_location(db_session, "east")
        assert match.status == LocationMatchStatus.ONE
        assert match.resolved.id == seeded["site_10_id"]

    @pytest.mark.asyncio
    async def test_ambiguous(self, db_session, seeded, resolver):
        match = await resolver.match_pad_location(db_session, "Site")
        assert match.status == LocationMatchStatus.MULTI
        assert len(match.candidates) == 2
        assert "ambiguous" in match.notes

    @pytest.mark.asyncio
    async def test_deleted_rows_ignored(self, db_session, seeded, resolver):
        db_session.add(PadLocation(name="Old Pad", is_deleted=True))
        await db_session.commit()

        match = await resolver.match_pad_location(db_session, "Old Pad")
        assert match.status == LocationMatchStatus.NONE


class TestBuildJourney:
    @pytest.mark.asyncio
    async def test_ready(self, db_session, seeded, resolver):
        pp = await resolver.match_pull_point(db_session, "Yard A")
        pl = await resolver.match_pad_location(db_session, "Site 9")

        journey = await resolver.build_journey(db_session, pp, pl)
        assert journey.status == JourneyStatus.READY
        assert journey.join_id == seeded["leg_9_id"]
        assert journey.miles == 42

    @pytest.mark.asyncio
    async def test_missing_join(self, db_session, seeded, resolver):
        pp = LocationMatch(LocationMatchStatus.ONE, LocationRef(seeded["yard_a_id"] + 100, "Nowhere"))
        pl = LocationMatch(LocationMatchStatus.ONE, LocationRef(seeded["site_9_id"], "Site 9"))

        journey = await resolver.build_journey(db_session, pp, pl)
        assert journey.status == JourneyStatus.MISSING_JOIN
        assert journey.join_id is None
        assert journey.method == "JOIN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_multi_side_is_partial(self, db_session, seeded, resolver):
        pp = await resolver.match_pull_point(db_session, "Yard B")
        pl = await resolver.match_pad_location(db_session, "Site 9")

        journey = await resolver.build_journey(db_session, pp, pl)
        assert journey.status == JourneyStatus.PARTIAL
        assert journey.pull_point_id is None
        assert journey.pad_location_id == seeded["site_9_id"]

    @pytest.mark.asyncio
    async def test_neither_side(self, db_session, seeded, resolver):
        none = LocationMatch(LocationMatchStatus.NONE)
        journey = await resolver.build_journey(db_session, none, none)
        assert journey == Journey(JourneyStatus.NONE, method="NONE")
