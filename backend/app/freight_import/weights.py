"""Weight and box-number extraction from vendor payloads.

Vendors report weight in different shapes::

    {"total_weight": "42,770"}
    {"box_numbers": "2608,6835"}
    {"weight": "2608 (22,060)\\n6835 (20,710)"}

The last form lists box numbers before the parentheses and per-box weights
inside them; their sum is used as net weight when nothing better exists.
"""

import re
from dataclasses import dataclass

_NUMERIC_JUNK_RE = re.compile(r"[^0-9.\-]")
_BOX_BEFORE_PAREN_RE = re.compile(r"(?:^|\n)\s*([0-9,]+)\s*\(", re.MULTILINE)
_WEIGHT_IN_PAREN_RE = re.compile(r"\(\s*([0-9,]+)\s*\)", re.MULTILINE)

LBS_PER_TON = 2000.0


@dataclass
class WeightReading:
    box1: float | None = None
    box2: float | None = None
    net_lbs: float | None = None

    @property
    def tons(self) -> float | None:
        return tons_from_lbs(self.net_lbs)


def to_float_or_none(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    s = str(value).strip()
    if not s:
        return None
    s = _NUMERIC_JUNK_RE.sub("", s)
    try:
        return float(s)
    except ValueError:
        return None


def tons_from_lbs(net_lbs: float | None) -> float | None:
    if net_lbs is None:
        return None
    return round(float(net_lbs) / LBS_PER_TON, 2)


def extract_weights(payload: dict | None) -> WeightReading:
    if not isinstance(payload, dict):
        return WeightReading()

    net = to_float_or_none(payload.get("total_weight"))
    if net is None:
        for key in ("total_lbs", "net_lbs", "netlbs", "net"):
            if payload.get(key) is not None:
                net = to_float_or_none(payload[key])
                break

    box1: float | None = None
    box2: float | None = None

    if payload.get("box_numbers") is not None:
        parts = [p.strip() for p in str(payload["box_numbers"]).split(",")]
        nums = [n for n in (to_float_or_none(p) for p in parts) if n is not None]
        if nums:
            box1 = nums[0]
        if len(nums) > 1:
            box2 = nums[1]

    if payload.get("weight") is not None:
        text = str(payload["weight"])

        box_nums = [
            float(int(v))
            for v in (to_float_or_none(raw) for raw in _BOX_BEFORE_PAREN_RE.findall(text))
            if v is not None
        ]
        if box1 is None and box_nums:
            box1 = box_nums[0]
        if box2 is None and len(box_nums) > 1:
            box2 = box_nums[1]

        if net is None:
            weights = [
                v for v in (to_float_or_none(raw) for raw in _WEIGHT_IN_PAREN_RE.findall(text))
                if v is not None
            ]
            if weights:
                total = sum(weights)
                net = total if total > 0 else None

    return WeightReading(
        box1=box1,
        box2=box2,
        net_lbs=net if net is not None and net > 0 else None,
    )
