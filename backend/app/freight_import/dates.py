"""Date handling for vendor timestamps.

Vendors send US-style strings (``02/13/2026 10:15 AM``), ISO strings, and
occasionally prefixed values such as ``archive 02/13/2026 10:15 AM``.
"""

import re
from datetime import date, datetime

from app.matching_engine.text import str_or_none

_MDY_PREFIX_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})\b")
_LABEL_COLON_RE = re.compile(r"^[A-Za-z_\-]+\s*:\s*")
_LABEL_WORD_RE = re.compile(r"^[A-Za-z_\-]+\s+")

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %I:%M:%S %p",
    "%m-%d-%Y %I:%M %p",
    "%m-%d-%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%m-%d-%Y",
)

DELIVERED_TIMESTAMP_KEYS = ("datetime_delivered", "datetime_at_destination", "delivery_time")
GENERIC_DELIVERY_KEYS = (
    "datetime_delivered",
    "datetime_at_destination",
    "delivery_time",
    "status_time",
)


def parse_datetime(value: str | None) -> datetime | None:
    s = str_or_none(value)
    if not s:
        return None

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def clean_delivery_time(value: str | None) -> str | None:
    """Strip leading labels such as ``status:`` or ``archive``."""
    s = str_or_none(value)
    if not s:
        return None
    s = _LABEL_COLON_RE.sub("", s)
    s = _LABEL_WORD_RE.sub("", s)
    return str_or_none(s)


def first_payload_value(payload: dict | None, keys: tuple[str, ...]) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in keys:
        v = str_or_none(payload.get(key))
        if v:
            return v
    return None


def guess_load_date(payload: dict | None, created_at: datetime | str | None) -> date | None:
    """Load date from the terminal-arrival timestamp, else record creation time."""
    at_terminal = first_payload_value(payload, ("datetime_at_terminal",))
    if at_terminal:
        found = _date_from_text(at_terminal)
        if found:
            return found

    if isinstance(created_at, datetime):
        return created_at.date()
    if isinstance(created_at, date):
        return created_at
    if created_at:
        return _date_from_text(str(created_at))
    return None


def _date_from_text(text: str) -> date | None:
    m = _MDY_PREFIX_RE.match(text.strip())
    if m:
        try:
            return date(int(m.group(3)), int(m.group(1)), int(m.group(2)))
        except ValueError:
            return None
    parsed = parse_datetime(text)
    return parsed.date() if parsed else None


def resolve_delivery_time(
    delivered_stage: bool,
    payload: dict | None,
    fallback: str | None,
) -> datetime | None:
    """Delivery timestamp to persist.

    Delivered stages prefer the payload's delivered / at-destination
    timestamps; everything else goes through the generic resolver, which ends
    at the normalized fallback value.
    """
    if delivered_stage:
        best = first_payload_value(payload, DELIVERED_TIMESTAMP_KEYS)
        if best:
            parsed = parse_datetime(best)
            if parsed:
                return parsed

    generic = first_payload_value(payload, GENERIC_DELIVERY_KEYS)
    if generic:
        return parse_datetime(clean_delivery_time(generic))

    cleaned = clean_delivery_time(fallback)
    return parse_datetime(cleaned) if cleaned else None


def review_timestamp(payload: dict | None) -> datetime | None:
    return parse_datetime(first_payload_value(payload, ("review_date",)))
