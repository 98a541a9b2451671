"""Inbound load endpoints — review queue, strict processing, batch processing."""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_batch_sequencer, get_db, get_inbound_service
from app.matching_engine.drivers import Confidence
from app.matching_engine.stages import Stage
from app.schemas.inbound import (
    BatchRequest,
    BatchResponse,
    BatchStepResponse,
    DriverMatchResponse,
    GroupTraceResponse,
    JourneyResponse,
    LocationMatchResponse,
    MatchBundle,
    ProcessRequest,
    ProcessResponse,
    QueueResponse,
    QueueRowResponse,
    ReadinessResponse,
)
from app.shipment_engine.batch import BatchResult, BatchSequencer, GroupTrace
from app.shipment_engine.service import InboundShipmentService, ProcessResult, QueueItem

router = APIRouter()


@router.get("/queue", response_model=QueueResponse)
async def get_queue(
    limit: int | None = Query(None),
    only: str = Query("unprocessed", pattern="^(unprocessed|processed|all)$"),
    q: str | None = None,
    match: Confidence | None = None,
    db: AsyncSession = Depends(get_db),
    service: InboundShipmentService = Depends(get_inbound_service),
) -> QueueResponse:
    """List recent import records with match results and stage readiness."""
    items = await service.list_queue(db, limit=limit, only=only, q=q, confidence=match)
    rows = [_queue_item_to_response(item) for item in items]
    return QueueResponse(rows=rows, count=len(rows))


@router.post("/process", response_model=ProcessResponse)
async def process_import(
    request: ProcessRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    service: InboundShipmentService = Depends(get_inbound_service),
) -> ProcessResponse:
    """Process one import record to its next stage (strict, forward-only)."""
    result = await service.process_import(db, request.import_id)
    if not result.ok:
        response.status_code = 422
    return _process_result_to_response(result)


@router.post("/process-batch", response_model=BatchResponse)
async def process_batch(
    request: BatchRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    sequencer: BatchSequencer = Depends(get_batch_sequencer),
) -> BatchResponse:
    """Group import records by shipment and replay their stages in order."""
    result = await sequencer.process_batch(db, request.import_ids)
    if result.error:
        response.status_code = 422
    return _batch_result_to_response(result)


def _queue_item_to_response(item: QueueItem) -> QueueRowResponse:
    c = item.candidate
    m = item.match
    # Weights belong to later stages; hide them while the load is at the terminal.
    show_weights = m.stage != Stage.AT_TERMINAL and c.weights.net_lbs is not None

    return QueueRowResponse(
        import_id=c.import_id,
        created_at=c.created_at,
        stage=m.stage,
        stage_rank=m.rank,
        driver_name=c.driver_name,
        truck_number=c.truck_number,
        trailer_number=c.trailer_number,
        jobname=c.jobname,
        terminal=c.terminal,
        shipment_number=c.shipment_number,
        ticket_number=c.ticket_number,
        state=c.status_text,
        delivery_time=c.delivery_time,
        boxes_note=c.boxes_note,
        net_lbs=int(round(c.weights.net_lbs)) if show_weights else None,
        tons=c.weights.tons if show_weights else None,
        miles=m.journey.miles,
        bol_path=c.bol.path,
        bol_type=c.bol.type,
        raw_carrier=c.raw_carrier,
        raw_truck=c.raw_truck,
        raw_original=c.raw_original,
        is_processed=item.is_processed,
        processed_shipment_id=item.processed_shipment_id,
        processed_shipment_detail_id=item.processed_shipment_detail_id,
        match=MatchBundle(
            confidence=m.confidence,
            driver=DriverMatchResponse.model_validate(m.driver),
            pull_point=LocationMatchResponse.model_validate(m.pull_point),
            pad_location=LocationMatchResponse.model_validate(m.pad_location),
            journey=JourneyResponse.model_validate(m.journey),
        ),
        readiness=ReadinessResponse(
            current_rank=item.readiness.current_rank,
            is_next_stage=item.readiness.is_next_stage,
            blocking_code=item.readiness.blocking_code.value if item.readiness.blocking_code else None,
            blocking_message=item.readiness.blocking_message,
        ),
    )


def _process_result_to_response(result: ProcessResult) -> ProcessResponse:
    response = ProcessResponse(
        ok=result.ok,
        import_id=result.import_id,
        stage=result.stage,
        shipment_id=result.shipment_id,
        shipment_detail_id=result.shipment_detail_id,
        already_exists=result.already_exists,
        updated=result.updated,
        superseded_import_ids=result.superseded_import_ids,
        current_rank=result.current_rank,
        desired_rank=result.desired_rank,
    )
    if result.error is not None:
        details = dict(result.error.details)
        response.code = result.error.code.value
        response.error = result.error.message
        response.transition = details.pop("transition", None)
        details.pop("current_rank", None)
        details.pop("desired_rank", None)
        response.details = details or None
    return response


def _group_trace_to_response(trace: GroupTrace) -> GroupTraceResponse:
    return GroupTraceResponse(
        group_key=trace.group_key,
        join_id=trace.join_id,
        shipment_number=trace.shipment_number,
        initial_rank=trace.initial_rank,
        selected_ranks=trace.selected_ranks,
        steps=[
            BatchStepResponse(
                rank=step.rank,
                stage=step.stage,
                import_id_used=step.import_id,
                ok=step.ok,
                result=_process_result_to_response(step.result),
            )
            for step in trace.steps
        ],
        ok=trace.ok,
        orphan=_process_result_to_response(trace.orphan) if trace.orphan else None,
    )


def _batch_result_to_response(result: BatchResult) -> BatchResponse:
    return BatchResponse(
        ok=result.ok,
        import_ids=result.import_ids,
        groups=result.groups,
        ok_groups=result.ok_groups,
        fail_groups=result.fail_groups,
        results=[_group_trace_to_response(t) for t in result.results],
        error=result.error,
    )
