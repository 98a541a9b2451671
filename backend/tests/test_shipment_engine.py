"""Tests for single-record processing: stage guard, writer and tracking."""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import func, select, update

from app.capabilities import IMPORT_TRACKING_FIELDS, OptionalField
from app.freight_import.normalizer import CandidateRecord
from app.matching_engine.stages import Stage
from app.models import Contact, ImportRecord, Shipment, ShipmentDetail
from app.shipment_engine.errors import FailureCode, ProcessingError
from app.shipment_engine.locks import GroupLocks
from app.shipment_engine.service import InboundShipmentService
from app.shipment_engine.writer import supersession_applies


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model.__table__))).scalar_one()


async def _set_detail(db, detail_id: int, **values) -> None:
    table = ShipmentDetail.__table__
    await db.execute(update(table).where(table.c.id == detail_id).values(**values))
    await db.commit()


# ── Stage 1 ──


class TestCreateAtTerminal:
    @pytest.mark.asyncio
    async def test_creates_shipment_and_detail(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        import_id = await add_import(load_payload())

        result = await service.process_import(db_session, import_id)

        assert result.ok is True
        assert result.stage == Stage.AT_TERMINAL
        assert result.current_rank == 0
        assert result.desired_rank == 1
        assert result.already_exists is False

        shipment = await fetch_row(Shipment, result.shipment_id)
        assert shipment["carrier_id"] == seeded["carrier_id"]
        assert shipment["contact_id"] == seeded["john_contact_id"]
        assert shipment["vehicle_id"] == seeded["truck_2512_id"]
        assert shipment["route_leg_id"] == seeded["leg_9_id"]
        assert shipment["load_date"] == date(2026, 2, 12)
        assert shipment["is_deleted"] is False

        detail = await fetch_row(ShipmentDetail, result.shipment_detail_id)
        assert detail["shipment_id"] == result.shipment_id
        assert detail["input_method"] == "IMPORT"
        assert detail["input_id"] == import_id
        assert detail["shipment_number"] == "741"
        assert detail["truck_number"] == "2512"
        assert detail["trailer_number"] == "88"
        assert detail["miles"] == 42
        assert detail["net_lbs"] is None

        record = await fetch_row(ImportRecord, import_id)
        assert record["is_inserted"] is True
        assert record["shipment_id"] == result.shipment_id
        assert record["shipment_detail_id"] == result.shipment_detail_id
        assert record["inserted_at"] is not None

    @pytest.mark.asyncio
    async def test_reprocessing_is_idempotent(self, db_session, seeded, service, add_import, load_payload):
        import_id = await add_import(load_payload())
        first = await service.process_import(db_session, import_id)

        second = await service.process_import(db_session, import_id)

        assert second.ok is True
        assert second.already_exists is True
        assert second.shipment_id == first.shipment_id
        assert second.shipment_detail_id == first.shipment_detail_id
        assert second.current_rank == 1
        assert await _count(db_session, Shipment) == 1
        assert await _count(db_session, ShipmentDetail) == 1

    @pytest.mark.asyncio
    async def test_reprocessing_backfills_tracking(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        import_id = await add_import(load_payload())
        first = await service.process_import(db_session, import_id)
        table = ImportRecord.__table__
        await db_session.execute(
            update(table).where(table.c.id == import_id).values(is_inserted=None, shipment_id=None)
        )
        await db_session.commit()

        second = await service.process_import(db_session, import_id)

        assert second.already_exists is True
        assert sorted(second.updated["import_records"]) == ["is_inserted", "shipment_id"]
        record = await fetch_row(ImportRecord, import_id)
        assert record["is_inserted"] is True
        assert record["shipment_id"] == first.shipment_id

    @pytest.mark.asyncio
    async def test_second_record_for_same_group_is_not_forward(self, db_session, seeded, service, add_import, load_payload):
        await service.process_import(db_session, await add_import(load_payload()))
        other_id = await add_import(load_payload(datetime_at_terminal="02/12/2026 09:00 AM"))

        result = await service.process_import(db_session, other_id)

        assert result.ok is False
        assert result.error.code == FailureCode.INVALID_TRANSITION
        assert result.error.details["transition"] == "not_forward"
        assert result.current_rank == 1
        assert result.desired_rank == 1
        assert await _count(db_session, Shipment) == 1

    @pytest.mark.asyncio
    async def test_boxes_note_on_create(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        import_id = await add_import(load_payload(box_numbers="2608,6835"))
        result = await service.process_import(db_session, import_id)

        detail = await fetch_row(ShipmentDetail, result.shipment_detail_id)
        assert detail["notes"] == "BOXES:2608,6835"

    @pytest.mark.asyncio
    async def test_without_tracking_columns(self, db_session, seeded, test_settings, capabilities, add_import, load_payload, fetch_row):
        service = InboundShipmentService(
            test_settings, capabilities.without(*IMPORT_TRACKING_FIELDS), locks=GroupLocks()
        )
        import_id = await add_import(load_payload())

        result = await service.process_import(db_session, import_id)

        assert result.ok is True
        assert "import_records" not in result.updated
        record = await fetch_row(ImportRecord, import_id)
        assert record["is_inserted"] is None

        # The detail back-reference still makes a retry idempotent
        again = await service.process_import(db_session, import_id)
        assert again.already_exists is True


# ── Blocking failures ──


class TestBlockingFailures:
    @pytest.mark.asyncio
    async def test_unknown_import(self, db_session, seeded, service):
        result = await service.process_import(db_session, 99999)
        assert result.ok is False
        assert result.error.code == FailureCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unresolved_route(self, db_session, seeded, service, add_import, load_payload):
        result = await service.process_import(db_session, await add_import(load_payload(terminal="Depot 12")))
        assert result.error.code == FailureCode.JOURNEY_NOT_READY
        assert result.error.details["journey_status"] == "PARTIAL"

    @pytest.mark.asyncio
    async def test_ambiguous_terminal(self, db_session, seeded, service, add_import, load_payload):
        result = await service.process_import(db_session, await add_import(load_payload(terminal="Yard B")))
        assert result.error.code == FailureCode.AMBIGUOUS_MATCH

    @pytest.mark.asyncio
    async def test_missing_shipment_number(self, db_session, seeded, service, add_import, load_payload):
        result = await service.process_import(db_session, await add_import(load_payload(loadnumber=None)))
        assert result.error.code == FailureCode.MISSING_KEY

    @pytest.mark.asyncio
    async def test_no_identity(self, db_session, seeded, service, add_import, load_payload):
        payload = load_payload(carrier="Acme Hauling\nZebulon Quartermaine", truck_trailer="9999")
        result = await service.process_import(db_session, await add_import(payload))
        assert result.error.code == FailureCode.NO_IDENTITY

    @pytest.mark.asyncio
    async def test_driver_without_carrier(self, db_session, seeded, service, add_import, load_payload):
        payload = load_payload(carrier="Acme Hauling\nNed Stark", truck_trailer=None)
        result = await service.process_import(db_session, await add_import(payload))
        assert result.error.code == FailureCode.NO_IDENTITY
        assert result.error.details["driver_id"] == seeded["ned_driver_id"]

    @pytest.mark.asyncio
    async def test_ambiguous_driver_name(self, db_session, seeded, service, add_import, load_payload):
        db_session.add_all([Contact(first_name="Dan", last_name="Leo"), Contact(first_name="Dan", last_name="Lea")])
        await db_session.commit()
        payload = load_payload(carrier="Acme Hauling\nDan Le", truck_trailer=None)

        result = await service.process_import(db_session, await add_import(payload))
        assert result.error.code == FailureCode.AMBIGUOUS_MATCH

    @pytest.mark.asyncio
    async def test_later_stage_without_base_record(self, db_session, seeded, service, add_import, load_payload):
        result = await service.process_import(
            db_session, await add_import(load_payload(status="In Transit"))
        )
        assert result.ok is False
        assert result.stage == Stage.IN_TRANSIT
        assert result.error.code == FailureCode.NO_BASE_RECORD
        assert result.current_rank == 0
        assert result.desired_rank == 2
        assert await _count(db_session, Shipment) == 0


# ── Stages 2-4 ──


class TestAdvance:
    @pytest.mark.asyncio
    async def test_in_transit_writes_weights_ticket_and_boxes(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        import_id = await add_import(load_payload(
            status="In Transit", total_weight="42,000", box_numbers="2608,6835", ticket_no="TK-9"
        ))

        result = await service.process_import(db_session, import_id)

        assert result.ok is True
        assert result.stage == Stage.IN_TRANSIT
        assert result.shipment_id == base.shipment_id
        assert result.current_rank == 1
        assert set(result.updated["shipment_details"]) == {"notes", "ticket_number", "net_lbs", "tons"}
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["net_lbs"] == 42000
        assert detail["tons"] == 21.0
        assert detail["ticket_number"] == "TK-9"
        assert detail["notes"] == "BOXES:2608,6835"
        assert await service.guard.infer_current_rank(db_session, seeded["leg_9_id"], "741") == 2

    @pytest.mark.asyncio
    async def test_boxes_append_to_existing_notes(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        await _set_detail(db_session, base.shipment_detail_id, notes="hazmat")

        await service.process_import(
            db_session, await add_import(load_payload(status="In Transit", box_numbers="2608,6835"))
        )

        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["notes"] == "hazmat | BOXES:2608,6835"

    @pytest.mark.asyncio
    async def test_recorded_boxes_are_never_replaced(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(
            db_session, await add_import(load_payload(box_numbers="1111,2222"))
        )
        prepared = await service.prepare(
            db_session, await add_import(load_payload(status="In Transit", box_numbers="2608,6835"))
        )
        group = await service.guard.find_group_row(db_session, prepared.join_id, "741")

        write = await service.writer.advance(db_session, Stage.IN_TRANSIT, prepared.candidate, group)
        await db_session.commit()

        assert "shipment_details" not in write.updated
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["notes"] == "BOXES:1111,2222"

    @pytest.mark.asyncio
    async def test_later_stage_links_its_own_record(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        import_id = await add_import(load_payload(status="In Transit", total_weight="42000"))

        result = await service.process_import(db_session, import_id)

        assert result.ok is True
        assert set(result.updated["import_records"]) == {f.column for f in IMPORT_TRACKING_FIELDS}
        record = await fetch_row(ImportRecord, import_id)
        assert record["is_inserted"] is True
        assert record["shipment_id"] == base.shipment_id
        assert record["shipment_detail_id"] == base.shipment_detail_id
        assert record["inserted_at"] is not None

    @pytest.mark.asyncio
    async def test_confirmation_without_review_date_reaches_rank_four(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        await service.process_import(
            db_session, await add_import(load_payload(status="In Transit", total_weight="42000"))
        )
        await service.process_import(
            db_session, await add_import(load_payload(status="Delivered", datetime_delivered="02/13/2026 10:15 AM"))
        )
        confirmed = await add_import(load_payload(
            status="Delivered", reconcile_status="CONFIRMED", datetime_delivered="02/13/2026 10:15 AM"
        ))

        result = await service.process_import(db_session, confirmed)

        assert result.ok is True
        assert result.stage == Stage.DELIVERED_CONFIRMED
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["review_date"] == datetime(2026, 2, 13, 10, 15)
        assert await service.guard.infer_current_rank(db_session, seeded["leg_9_id"], "741") == 4

        replay = await service.process_import(db_session, confirmed)
        assert replay.ok is False
        assert replay.error.code == FailureCode.INVALID_TRANSITION
        assert replay.error.details["transition"] == "not_forward"
        assert replay.current_rank == 4

        another = await service.process_import(
            db_session, await add_import(load_payload(status="Delivered", reconcile_status="CONFIRMED"))
        )
        assert another.ok is False
        assert another.current_rank == 4

    @pytest.mark.asyncio
    async def test_confirmation_without_any_timestamp_is_stamped_now(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        await service.process_import(
            db_session, await add_import(load_payload(status="In Transit", total_weight="42000"))
        )
        await service.process_import(db_session, await add_import(load_payload(status="Delivered")))
        before = datetime.now(timezone.utc).replace(tzinfo=None)

        result = await service.process_import(
            db_session, await add_import(load_payload(status="Delivered", reconcile_status="CONFIRMED"))
        )

        assert result.ok is True
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["review_date"] is not None
        assert detail["review_date"] >= before.replace(microsecond=0)

    @pytest.mark.asyncio
    async def test_delivered_pending(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))
        await service.process_import(
            db_session, await add_import(load_payload(status="In Transit", total_weight="42000"))
        )
        import_id = await add_import(
            load_payload(status="Delivered", datetime_delivered="02/13/2026 10:15 AM"),
            image_path="bol/741_c.png",
        )

        result = await service.process_import(db_session, import_id)

        assert result.ok is True
        assert result.stage == Stage.DELIVERED_PENDING
        shipment = await fetch_row(Shipment, base.shipment_id)
        assert shipment["delivery_time"] == datetime(2026, 2, 13, 10, 15)
        assert shipment["delivery_date"] == date(2026, 2, 13)
        assert shipment["is_finished"] is True
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["bol_path"] is None
        assert detail["review_date"] is None
        assert result.superseded_import_ids == []

    @pytest.mark.asyncio
    async def test_skipping_a_stage_is_rejected(self, db_session, seeded, service, add_import, load_payload):
        await service.process_import(db_session, await add_import(load_payload()))

        result = await service.process_import(
            db_session, await add_import(load_payload(status="Delivered"))
        )

        assert result.ok is False
        assert result.error.code == FailureCode.INVALID_TRANSITION
        assert result.error.details["transition"] == "skipped"
        assert result.current_rank == 1
        assert result.desired_rank == 3

    @pytest.mark.asyncio
    async def test_missing_weight_columns_are_skipped(self, db_session, seeded, test_settings, capabilities, add_import, load_payload, fetch_row):
        service = InboundShipmentService(
            test_settings,
            capabilities.without(OptionalField.DETAIL_NET_LBS, OptionalField.DETAIL_TONS),
            locks=GroupLocks(),
        )
        base = await service.process_import(db_session, await add_import(load_payload()))

        result = await service.process_import(
            db_session, await add_import(load_payload(status="In Transit", total_weight="42000"))
        )

        assert result.ok is True
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["net_lbs"] is None
        assert detail["tons"] is None

    @pytest.mark.asyncio
    async def test_advance_requires_group(self, db_session, seeded, service, add_import, load_payload):
        prepared = await service.prepare(
            db_session, await add_import(load_payload(status="In Transit"))
        )
        with pytest.raises(ProcessingError) as exc:
            await service.writer.advance(db_session, Stage.IN_TRANSIT, prepared.candidate, None)
        assert exc.value.code == FailureCode.MISSING_BASE_RECORD
        assert exc.value.details["required_stage"] == "AT_TERMINAL"

    @pytest.mark.asyncio
    async def test_advance_rejects_stage_one(self, db_session, seeded, service, add_import, load_payload):
        prepared = await service.prepare(db_session, await add_import(load_payload()))
        with pytest.raises(ProcessingError) as exc:
            await service.writer.advance(db_session, Stage.AT_TERMINAL, prepared.candidate, None)
        assert exc.value.code == FailureCode.UNKNOWN_STAGE


# ── Bill of lading ──


class TestBillOfLading:
    @pytest.mark.asyncio
    async def test_in_transit_bol_supersedes_sibling_images(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        a_id = await add_import(load_payload(), image_path="bol/741_a.jpg", image_original="orig/741_a.jpg")
        base = await service.process_import(db_session, a_id)
        b_id = await add_import(load_payload(status="In Transit"), image_path="bol/741_b.pdf")

        result = await service.process_import(db_session, b_id)

        assert result.superseded_import_ids == [a_id]
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["bol_path"] == "bol/741_b.pdf"
        assert detail["bol_type"] == "pdf"
        a = await fetch_row(ImportRecord, a_id)
        assert a["image_path"] == "bol/741_a_REPLACED.jpg"
        assert a["image_original"] == "orig/741_a_REPLACED.jpg"
        b = await fetch_row(ImportRecord, b_id)
        assert b["image_path"] == "bol/741_b.pdf"

    @pytest.mark.asyncio
    async def test_other_groups_are_not_superseded(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        other_job = await add_import(load_payload(jobname="Site 10 / East"), image_path="bol/741_east.jpg")
        other_number = await add_import(load_payload(loadnumber="7410"), image_path="bol/7410.jpg")
        await service.process_import(db_session, await add_import(load_payload()))

        result = await service.process_import(
            db_session,
            await add_import(load_payload(status="In Transit"), image_path="bol/741_b.jpg"),
        )

        assert result.superseded_import_ids == []
        assert (await fetch_row(ImportRecord, other_job))["image_path"] == "bol/741_east.jpg"
        assert (await fetch_row(ImportRecord, other_number))["image_path"] == "bol/7410.jpg"

    @pytest.mark.asyncio
    async def test_unknown_extension_is_not_written(self, db_session, seeded, service, add_import, load_payload, fetch_row):
        base = await service.process_import(db_session, await add_import(load_payload()))

        result = await service.process_import(
            db_session,
            await add_import(load_payload(status="In Transit"), image_path="bol/741_b.docx"),
        )

        assert result.ok is True
        detail = await fetch_row(ShipmentDetail, base.shipment_detail_id)
        assert detail["bol_path"] is None


class TestSupersessionApplies:
    def _record(self, **fields) -> CandidateRecord:
        defaults = {"import_id": 1, "shipment_number": "741", "jobname": "Site 9", "terminal": "Yard A", "truck_number": "2512"}
        defaults.update(fields)
        return CandidateRecord(**defaults)

    def test_same_group(self):
        assert supersession_applies(self._record(), self._record(import_id=2))

    def test_truck_found_in_raw_text(self):
        other = self._record(import_id=2, truck_number=None, raw_truck="Truck # 2512 / 88")
        assert supersession_applies(self._record(), other)

    @pytest.mark.parametrize(
        "field,value",
        [("shipment_number", "742"), ("jobname", "Site 10"), ("terminal", "Yard B"), ("truck_number", "T77")],
    )
    def test_key_mismatch(self, field, value):
        assert not supersession_applies(self._record(), self._record(import_id=2, **{field: value}))

    def test_acting_without_optional_keys_matches_on_number(self):
        acting = self._record(jobname=None, terminal=None, truck_number=None)
        assert supersession_applies(acting, self._record(import_id=2, jobname="Elsewhere"))

    def test_acting_without_number_never_applies(self):
        assert not supersession_applies(self._record(shipment_number=None), self._record(import_id=2))
