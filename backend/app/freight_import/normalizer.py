"""Turns a raw import_records row into a structured candidate record.

Structured columns win over payload keys whenever the deployment has them
and they are non-blank; everything else is read from ``payload_json``, and
as a last resort from the free-text ``payload_original`` block.
"""

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime

from app.capabilities import (
    IMPORT_ATTACHMENT_FIELDS,
    IMPORT_STRUCTURED_FIELDS,
    IMPORT_TRACKING_FIELDS,
    SchemaCapabilities,
)
from app.freight_import.attachments import BolReference, extract_bol
from app.freight_import.dates import guess_load_date
from app.freight_import.weights import WeightReading, extract_weights
from app.matching_engine.stages import extract_reconcile_flag
from app.matching_engine.text import str_or_none
from app.models.import_record import ImportRecord
from app.shipment_engine.boxes import build_boxes_note

logger = logging.getLogger("inbound.freight_import.normalizer")

_LINE_SPLIT_RE = re.compile(r"\r\n|\n|\r")
_PERSON_NAME_RE = re.compile(r"\b([A-Z][a-z]+)\s+([A-Z][a-z]+)\b")
_TRUCK_LABEL_RE = re.compile(r"Truck\s*#?:?\s*([A-Za-z0-9]+)", re.IGNORECASE)
_TRAILER_LABEL_RE = re.compile(r"Trailer\s*#?:?\s*([A-Za-z0-9]+)", re.IGNORECASE)
_TRUCK_TRAILER_PAIR_RE = re.compile(r"^\s*([A-Za-z0-9]+)\s*[/\-]\s*([A-Za-z0-9]+)\s*$")
_BARE_TOKEN_RE = re.compile(r"^[A-Za-z0-9]+$")


@dataclass
class CandidateRecord:
    import_id: int
    created_at: datetime | None = None
    payload: dict = field(default_factory=dict)
    payload_text: str | None = None

    driver_name: str | None = None
    truck_number: str | None = None
    trailer_number: str | None = None
    jobname: str | None = None
    terminal: str | None = None
    shipment_number: str | None = None
    ticket_number: str | None = None
    status_text: str | None = None
    delivery_time: str | None = None

    raw_carrier: str | None = None
    raw_truck: str | None = None
    raw_original: str | None = None

    reconcile_flag: str | None = None
    weights: WeightReading = field(default_factory=WeightReading)
    bol: BolReference = field(default_factory=BolReference)
    load_date: date | None = None

    # Tracking columns as read; None when the deployment lacks them
    is_inserted: bool | None = None
    linked_shipment_id: int | None = None
    linked_shipment_detail_id: int | None = None

    @property
    def boxes_note(self) -> str | None:
        return build_boxes_note(self.weights.box1, self.weights.box2)

    def search_text(self) -> str:
        """Lower-cased haystack for the review queue's free-text filter."""
        parts = [
            self.driver_name, self.truck_number, self.trailer_number,
            self.jobname, self.terminal, self.shipment_number, self.ticket_number,
            self.raw_carrier, self.raw_truck, self.raw_original, self.payload_text,
        ]
        return " ".join(p for p in parts if p).lower()


def decode_payload(payload_json: str | None) -> dict:
    if not payload_json:
        return {}
    try:
        decoded = json.loads(payload_json)
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def extract_driver_name(carrier: str | None) -> str | None:
    """Second line of a multi-line carrier block, else a ``First Last`` pair."""
    if not carrier:
        return None

    lines = _LINE_SPLIT_RE.split(carrier)
    if len(lines) >= 2:
        maybe = str_or_none(lines[1])
        if maybe:
            return maybe

    m = _PERSON_NAME_RE.search(carrier)
    if m:
        return f"{m.group(1)} {m.group(2)}"

    return str_or_none(carrier)


def extract_truck_number(text: str | None) -> str | None:
    if not text:
        return None

    m = _TRUCK_LABEL_RE.search(text)
    if m:
        return m.group(1)

    m = _TRUCK_TRAILER_PAIR_RE.match(text.strip())
    if m:
        return m.group(1)

    t = text.strip()
    if t and _BARE_TOKEN_RE.match(t):
        return t
    return None


def extract_trailer_number(text: str | None) -> str | None:
    if not text:
        return None

    m = _TRAILER_LABEL_RE.search(text)
    if m:
        return m.group(1)

    m = _TRUCK_TRAILER_PAIR_RE.match(text.strip())
    if m:
        return m.group(2)
    return None


def _first(*values) -> str | None:
    for v in values:
        s = str_or_none(v)
        if s:
            return s
    return None


class ImportNormalizer:
    """Builds ``CandidateRecord`` objects from import rows.

    ``row`` is any mapping holding the columns the deployment selected;
    absent optional columns simply read as missing.
    """

    def normalize(self, row: Mapping) -> CandidateRecord:
        payload = decode_payload(row.get("payload_json"))

        jobname = _first(row.get("jobname"), payload.get("jobname"))
        terminal = _first(row.get("terminal"), payload.get("terminal"))
        status_text = _first(row.get("state"), payload.get("status"), payload.get("state"))
        delivery_time = _first(
            row.get("delivery_time"),
            payload.get("delivery_time"),
            payload.get("datetime_delivered"),
            payload.get("datetime_at_destination"),
            payload.get("status_time"),
        )
        shipment_number = _first(
            row.get("shipment_number"),
            payload.get("loadnumber"),
            payload.get("load_number"),
            payload.get("shipment_number"),
        )
        ticket_number = _first(
            row.get("ticket_number"), payload.get("ticket_no"), payload.get("ticket_number")
        )

        carrier_block = _first(row.get("carrier"), payload.get("carrier"))
        truck_block = _first(
            row.get("truck"),
            payload.get("truck_trailer"),
            payload.get("truck_number"),
            payload.get("truck"),
        )
        original = str_or_none(row.get("payload_original"))
        if not carrier_block and original:
            carrier_block = original
        if not truck_block and original:
            truck_block = original

        trailer = _first(
            payload.get("trailer_number"), payload.get("trailer"), payload.get("trailer_no")
        ) or extract_trailer_number(truck_block)

        created_at = row.get("created_at")

        candidate = CandidateRecord(
            import_id=int(row["id"]),
            created_at=created_at,
            payload=payload,
            payload_text=str_or_none(row.get("payload_json")),
            driver_name=extract_driver_name(carrier_block),
            truck_number=extract_truck_number(truck_block),
            trailer_number=trailer,
            jobname=jobname,
            terminal=terminal,
            shipment_number=shipment_number,
            ticket_number=ticket_number,
            status_text=status_text,
            delivery_time=delivery_time,
            raw_carrier=carrier_block,
            raw_truck=truck_block,
            raw_original=original,
            reconcile_flag=extract_reconcile_flag(payload),
            weights=extract_weights(payload),
            bol=extract_bol(row.get("image_path"), row.get("payload_path"), payload),
            load_date=guess_load_date(payload, created_at),
            is_inserted=_as_bool(row.get("is_inserted")),
            linked_shipment_id=row.get("shipment_id"),
            linked_shipment_detail_id=row.get("shipment_detail_id"),
        )
        logger.debug(
            "Normalized import %s: shipment=%r driver=%r truck=%r",
            candidate.import_id, shipment_number, candidate.driver_name, candidate.truck_number,
        )
        return candidate


def _as_bool(value) -> bool | None:
    if value is None:
        return None
    return bool(value)


_BASE_IMPORT_COLUMNS = ("id", "payload_json", "payload_original", "payload_path", "created_at")


def import_columns(capabilities: SchemaCapabilities) -> list:
    """Columns of import_records to select on this deployment."""
    table = ImportRecord.__table__
    optional = capabilities.supported(
        IMPORT_STRUCTURED_FIELDS + IMPORT_TRACKING_FIELDS + IMPORT_ATTACHMENT_FIELDS
    )
    return [table.c[name] for name in _BASE_IMPORT_COLUMNS] + [
        table.c[f.column] for f in optional
    ]
