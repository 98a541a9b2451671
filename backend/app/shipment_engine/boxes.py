"""``BOXES:`` annotations on shipment detail notes.

Box numbers never change once recorded, so a note that already carries a
``BOXES:`` token is left exactly as it is.
"""

import re

BOXES_TOKEN_RE = re.compile(r"\bBOXES:[0-9,\s]+\b", re.IGNORECASE)
NOTE_SEPARATOR = " | "


def build_boxes_note(box1: float | None, box2: float | None) -> str | None:
    a = int(round(box1)) if box1 is not None else None
    b = int(round(box2)) if box2 is not None else None

    if a is None and b is None:
        return None
    if a is not None and b is not None:
        return f"BOXES:{a},{b}"
    if a is not None:
        return f"BOXES:{a}"
    return f"BOXES:{b}"


def has_boxes_token(notes: str | None) -> bool:
    return bool(notes) and BOXES_TOKEN_RE.search(notes) is not None


def merge_boxes_note(current: str | None, boxes_note: str) -> str:
    """Append ``boxes_note`` unless the notes already hold a boxes token."""
    cur = (current or "").strip()
    if not cur:
        return boxes_note
    if has_boxes_token(cur):
        return cur
    return cur + NOTE_SEPARATOR + boxes_note
