"""Pydantic schemas for inbound load matching and processing."""

from datetime import datetime

from pydantic import BaseModel, Field

from app.matching_engine.drivers import Confidence, DriverMatchStatus
from app.matching_engine.routes import JourneyStatus, LocationMatchStatus
from app.matching_engine.stages import Stage


class DriverIdentityResponse(BaseModel):
    method: str
    driver_id: int
    contact_id: int
    vehicle_id: int | None = None
    carrier_id: int | None = None

    model_config = {"from_attributes": True}


class DriverMatchResponse(BaseModel):
    status: DriverMatchStatus
    resolved: DriverIdentityResponse | None = None
    by_name: DriverIdentityResponse | None = None
    by_truck: DriverIdentityResponse | None = None
    notes: str = ""

    model_config = {"from_attributes": True}


class LocationRefResponse(BaseModel):
    id: int
    name: str
    method: str | None = None

    model_config = {"from_attributes": True}


class LocationMatchResponse(BaseModel):
    status: LocationMatchStatus
    resolved: LocationRefResponse | None = None
    candidates: list[LocationRefResponse] = Field(default_factory=list)
    notes: str = ""

    model_config = {"from_attributes": True}


class JourneyResponse(BaseModel):
    status: JourneyStatus
    pull_point_id: int | None = None
    pad_location_id: int | None = None
    join_id: int | None = None
    miles: int | None = None
    method: str

    model_config = {"from_attributes": True}


class MatchBundle(BaseModel):
    confidence: Confidence
    driver: DriverMatchResponse
    pull_point: LocationMatchResponse
    pad_location: LocationMatchResponse
    journey: JourneyResponse


class ReadinessResponse(BaseModel):
    current_rank: int | None = None
    is_next_stage: bool
    blocking_code: str | None = None
    blocking_message: str | None = None


class QueueRowResponse(BaseModel):
    import_id: int
    created_at: datetime | None = None
    stage: Stage
    stage_rank: int

    driver_name: str | None = None
    truck_number: str | None = None
    trailer_number: str | None = None
    jobname: str | None = None
    terminal: str | None = None
    shipment_number: str | None = None
    ticket_number: str | None = None
    state: str | None = None
    delivery_time: str | None = None

    boxes_note: str | None = None
    net_lbs: int | None = None
    tons: float | None = None
    miles: int | None = None
    bol_path: str | None = None
    bol_type: str | None = None

    raw_carrier: str | None = None
    raw_truck: str | None = None
    raw_original: str | None = None

    is_processed: bool
    processed_shipment_id: int | None = None
    processed_shipment_detail_id: int | None = None

    match: MatchBundle
    readiness: ReadinessResponse


class QueueResponse(BaseModel):
    rows: list[QueueRowResponse]
    count: int


class ProcessRequest(BaseModel):
    import_id: int = Field(..., gt=0)


class ProcessResponse(BaseModel):
    ok: bool
    import_id: int
    stage: Stage | None = None
    shipment_id: int | None = None
    shipment_detail_id: int | None = None
    already_exists: bool = False
    updated: dict[str, list[str]] = Field(default_factory=dict)
    superseded_import_ids: list[int] = Field(default_factory=list)
    current_rank: int | None = None
    desired_rank: int | None = None
    code: str | None = None
    error: str | None = None
    transition: str | None = None
    details: dict | None = None


class BatchRequest(BaseModel):
    import_ids: list[int] = Field(default_factory=list)


class BatchStepResponse(BaseModel):
    rank: int
    stage: Stage
    import_id_used: int
    ok: bool
    result: ProcessResponse


class GroupTraceResponse(BaseModel):
    group_key: str | None = None
    join_id: int | None = None
    shipment_number: str | None = None
    initial_rank: int | None = None
    selected_ranks: list[int] = Field(default_factory=list)
    steps: list[BatchStepResponse] = Field(default_factory=list)
    ok: bool
    orphan: ProcessResponse | None = None


class BatchResponse(BaseModel):
    ok: bool
    import_ids: list[int] = Field(default_factory=list)
    groups: int = 0
    ok_groups: int = 0
    fail_groups: int = 0
    results: list[GroupTraceResponse] = Field(default_factory=list)
    error: str | None = None
