"""Tests for stage classification and the forward-only transition rule."""

from datetime import date, datetime

import pytest

from app.matching_engine.stages import (
    Stage,
    TERMINAL_STAGE,
    classify,
    extract_reconcile_flag,
    normalize_status,
    rank_to_stage,
    stage_rank,
)
from app.shipment_engine.errors import FailureCode, ProcessingError, Transition
from app.shipment_engine.guard import check_transition, rank_from_row, required_prior_stage


class TestClassify:
    @pytest.mark.parametrize(
        "status,flag,expected",
        [
            ("At Terminal", None, Stage.AT_TERMINAL),
            ("at-terminal", None, Stage.AT_TERMINAL),
            ("AtTerminal", None, Stage.AT_TERMINAL),
            ("In Transit", None, Stage.IN_TRANSIT),
            ("INTRANSIT", "CONFIRMED", Stage.IN_TRANSIT),
            ("Delivered", None, Stage.DELIVERED_PENDING),
            ("Delivered", "pending", Stage.DELIVERED_PENDING),
            ("Delivered", " confirmed ", Stage.DELIVERED_CONFIRMED),
            ("Delivered - Awaiting Review", "CONFIRMED", Stage.DELIVERED_CONFIRMED),
        ],
    )
    def test_status_tokens(self, status, flag, expected):
        assert classify(status, flag) == expected

    def test_unrecognised_text_uses_flag(self):
        assert classify("Reviewed", "CONFIRMED") == Stage.DELIVERED_CONFIRMED
        assert classify(None, "PENDING") == Stage.DELIVERED_PENDING

    def test_default_is_at_terminal(self):
        assert classify(None) == Stage.AT_TERMINAL
        assert classify("???", "SOMETHING") == Stage.AT_TERMINAL

    def test_normalize_status(self):
        assert normalize_status(" in transit ") == "IN_TRANSIT"
        assert normalize_status(None) == ""


class TestReconcileFlag:
    def test_snake_case_key(self):
        assert extract_reconcile_flag({"reconcile_status": " confirmed "}) == "CONFIRMED"

    def test_camel_case_key(self):
        assert extract_reconcile_flag({"reconcileStatus": "Pending"}) == "PENDING"

    def test_missing_or_blank(self):
        assert extract_reconcile_flag({"reconcile_status": "  "}) is None
        assert extract_reconcile_flag({}) is None
        assert extract_reconcile_flag(None) is None


class TestRankMapping:
    def test_ranks_are_fixed(self):
        assert [stage_rank(s) for s in Stage] == [1, 2, 3, 4]

    def test_inverse(self):
        for stage in Stage:
            assert rank_to_stage(stage_rank(stage)) == stage

    def test_accepts_string_value(self):
        assert stage_rank("IN_TRANSIT") == 2

    @pytest.mark.parametrize("rank", [0, 5, -1])
    def test_out_of_range(self, rank):
        with pytest.raises(ValueError):
            rank_to_stage(rank)

    def test_terminal_stage(self):
        assert TERMINAL_STAGE == Stage.DELIVERED_CONFIRMED

    def test_required_prior_stage(self):
        assert required_prior_stage(Stage.IN_TRANSIT) == Stage.AT_TERMINAL
        assert required_prior_stage(Stage.DELIVERED_CONFIRMED) == Stage.DELIVERED_PENDING


class TestCheckTransition:
    @pytest.mark.parametrize("current,desired", [(0, 1), (1, 2), (2, 3), (3, 4)])
    def test_next_stage_allowed(self, current, desired):
        check_transition(current, desired)

    @pytest.mark.parametrize("desired", [2, 3, 4])
    def test_no_base_record(self, desired):
        with pytest.raises(ProcessingError) as exc:
            check_transition(0, desired)
        assert exc.value.code == FailureCode.NO_BASE_RECORD
        assert "AT_TERMINAL must be processed first" in exc.value.message

    @pytest.mark.parametrize("current,desired", [(1, 1), (2, 1), (4, 4), (4, 2)])
    def test_not_forward(self, current, desired):
        with pytest.raises(ProcessingError) as exc:
            check_transition(current, desired)
        assert exc.value.code == FailureCode.INVALID_TRANSITION
        assert exc.value.details["transition"] == Transition.NOT_FORWARD.value
        assert exc.value.details["current_rank"] == current
        assert exc.value.details["desired_rank"] == desired

    def test_skip(self):
        with pytest.raises(ProcessingError) as exc:
            check_transition(1, 3)
        assert exc.value.code == FailureCode.INVALID_TRANSITION
        assert exc.value.details["transition"] == "skipped"
        assert "IN_TRANSIT must be processed first" in exc.value.message

    @pytest.mark.parametrize("desired", [4, 5])
    def test_nothing_moves_past_the_terminal_stage(self, desired):
        with pytest.raises(ProcessingError) as exc:
            check_transition(4, desired)
        assert exc.value.details["transition"] == "not_forward"
        assert "already reached DELIVERED_CONFIRMED" in exc.value.message

    def test_to_dict(self):
        with pytest.raises(ProcessingError) as exc:
            check_transition(2, 4)
        assert exc.value.to_dict() == {
            "code": "INVALID_TRANSITION",
            "message": exc.value.message,
            "current_rank": 2,
            "desired_rank": 4,
            "transition": "skipped",
        }


class TestRankFromRow:
    def test_no_row(self):
        assert rank_from_row(None) == 0

    def test_bare_row(self):
        assert rank_from_row({"net_lbs": None, "tons": 0}) == 1

    def test_weights(self):
        assert rank_from_row({"net_lbs": 42000}) == 2
        assert rank_from_row({"tons": "21.5"}) == 2
        assert rank_from_row({"net_lbs": "n/a"}) == 1

    def test_delivery(self):
        assert rank_from_row({"delivery_time": datetime(2026, 2, 13, 10, 15)}) == 3
        assert rank_from_row({"delivery_date": date(2026, 2, 13)}) == 3
        assert rank_from_row({"is_finished": True, "net_lbs": 42000}) == 3

    def test_review_date_wins(self):
        assert rank_from_row({"review_date": datetime(2026, 2, 14), "is_finished": False}) == 4

    def test_missing_columns_are_ignored(self):
        # A deployment without weight columns still reads rank 1 for an existing row
        assert rank_from_row({"shipment_id": 1, "shipment_detail_id": 1}) == 1
