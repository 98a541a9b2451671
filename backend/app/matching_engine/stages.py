"""Shipment lifecycle stages and status-text classification.

Four stages in fixed rank order:

    AT_TERMINAL(1) -> IN_TRANSIT(2) -> DELIVERED_PENDING(3) -> DELIVERED_CONFIRMED(4)
"""

import enum

from app.matching_engine.text import str_or_none


class Stage(str, enum.Enum):
    AT_TERMINAL = "AT_TERMINAL"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED_PENDING = "DELIVERED_PENDING"
    DELIVERED_CONFIRMED = "DELIVERED_CONFIRMED"


STAGE_RANK: dict[Stage, int] = {
    Stage.AT_TERMINAL: 1,
    Stage.IN_TRANSIT: 2,
    Stage.DELIVERED_PENDING: 3,
    Stage.DELIVERED_CONFIRMED: 4,
}

_RANK_STAGE: dict[int, Stage] = {rank: stage for stage, rank in STAGE_RANK.items()}

TERMINAL_STAGE = Stage.DELIVERED_CONFIRMED

RECONCILE_CONFIRMED = "CONFIRMED"
RECONCILE_PENDING = "PENDING"


def stage_rank(stage: Stage) -> int:
    return STAGE_RANK[Stage(stage)]


def rank_to_stage(rank: int) -> Stage:
    try:
        return _RANK_STAGE[rank]
    except KeyError:
        raise ValueError(f"No stage has rank {rank}; ranks run 1..{len(_RANK_STAGE)}") from None


def normalize_status(status_text: str | None) -> str:
    s = (status_text or "").strip().upper().replace("-", "_").replace(" ", "_")
    if s == "ATTERMINAL":
        return "AT_TERMINAL"
    if s == "INTRANSIT":
        return "IN_TRANSIT"
    return s


def extract_reconcile_flag(payload: dict | None) -> str | None:
    """``reconcile_status`` / ``reconcileStatus`` from the payload, upper-cased."""
    if not isinstance(payload, dict):
        return None
    value = payload.get("reconcile_status")
    if value is None:
        value = payload.get("reconcileStatus")
    value = str_or_none(value)
    return value.upper() if value else None


def classify(status_text: str | None, reconcile_flag: str | None = None) -> Stage:
    """Derive the stage a record declares.

    Literal tokens decide AT_TERMINAL / IN_TRANSIT. Any DELIVERED token is
    split by the reconcile flag (CONFIRMED, else PENDING). Unrecognised text
    falls back to the reconcile flag alone, and finally to AT_TERMINAL.
    """
    state = normalize_status(status_text)
    flag = (reconcile_flag or "").strip().upper() or None

    if "AT_TERMINAL" in state:
        return Stage.AT_TERMINAL
    if "IN_TRANSIT" in state:
        return Stage.IN_TRANSIT

    if "DELIVERED" in state:
        if flag == RECONCILE_CONFIRMED:
            return Stage.DELIVERED_CONFIRMED
        return Stage.DELIVERED_PENDING

    if flag == RECONCILE_CONFIRMED:
        return Stage.DELIVERED_CONFIRMED
    if flag == RECONCILE_PENDING:
        return Stage.DELIVERED_PENDING

    return Stage.AT_TERMINAL
