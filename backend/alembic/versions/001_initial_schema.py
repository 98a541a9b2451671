"""Initial schema: reference data, import records and the shipment aggregate

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Reference data: who ran the load
    op.create_table(
        "carriers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "contacts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
    )
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("vehicle_number", sa.String(50), nullable=True),
        sa.Column("vehicle_name", sa.String(100), nullable=True),
    )
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("contact_id", sa.Integer, sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("carrier_id", sa.Integer, sa.ForeignKey("carriers.id"), nullable=True),
    )

    # Reference data: where it went
    op.create_table(
        "pull_points",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "pad_locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "route_legs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("pull_point_id", sa.Integer, sa.ForeignKey("pull_points.id"), nullable=False),
        sa.Column("pad_location_id", sa.Integer, sa.ForeignKey("pad_locations.id"), nullable=False),
        sa.Column("miles", sa.Integer, nullable=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_route_legs_pair", "route_legs", ["pull_point_id", "pad_location_id"])

    # Shipment aggregate
    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("carrier_id", sa.Integer, sa.ForeignKey("carriers.id"), nullable=False),
        sa.Column("contact_id", sa.Integer, sa.ForeignKey("contacts.id"), nullable=False),
        sa.Column("vehicle_id", sa.Integer, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("route_leg_id", sa.Integer, sa.ForeignKey("route_legs.id"), nullable=False),
        sa.Column("load_date", sa.Date, nullable=True),
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("delivery_time", sa.DateTime, nullable=True),
        sa.Column("delivery_date", sa.Date, nullable=True),
        sa.Column("is_finished", sa.Boolean, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_shipments_route_leg_id", "shipments", ["route_leg_id"])

    op.create_table(
        "shipment_details",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("shipment_id", sa.Integer, sa.ForeignKey("shipments.id"), nullable=False),
        sa.Column("input_method", sa.String(20), nullable=True),
        sa.Column("input_id", sa.Integer, nullable=True),
        sa.Column("shipment_number", sa.String(100), nullable=True),
        sa.Column("truck_number", sa.String(50), nullable=True),
        sa.Column("trailer_number", sa.String(50), nullable=True),
        sa.Column("miles", sa.Integer, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("ticket_number", sa.String(100), nullable=True),
        sa.Column("net_lbs", sa.Integer, nullable=True),
        sa.Column("tons", sa.Float, nullable=True),
        sa.Column("bol_path", sa.String(1024), nullable=True),
        sa.Column("bol_type", sa.String(20), nullable=True),
        sa.Column("review_date", sa.DateTime, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_shipment_details_shipment_id", "shipment_details", ["shipment_id"])
    op.create_index("ix_shipment_details_input_id", "shipment_details", ["input_id"])
    op.create_index("ix_shipment_details_shipment_number", "shipment_details", ["shipment_number"])

    # Vendor import records
    op.create_table(
        "import_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("payload_json", sa.Text, nullable=True),
        sa.Column("payload_original", sa.Text, nullable=True),
        sa.Column("payload_path", sa.String(1024), nullable=True),
        sa.Column("jobname", sa.String(200), nullable=True),
        sa.Column("carrier", sa.Text, nullable=True),
        sa.Column("truck", sa.String(200), nullable=True),
        sa.Column("terminal", sa.String(200), nullable=True),
        sa.Column("state", sa.String(50), nullable=True),
        sa.Column("delivery_time", sa.String(50), nullable=True),
        sa.Column("shipment_number", sa.String(100), nullable=True),
        sa.Column("ticket_number", sa.String(100), nullable=True),
        sa.Column("image_path", sa.String(1024), nullable=True),
        sa.Column("image_original", sa.String(1024), nullable=True),
        sa.Column("is_inserted", sa.Boolean, nullable=True),
        sa.Column("shipment_id", sa.Integer, nullable=True),
        sa.Column("shipment_detail_id", sa.Integer, nullable=True),
        sa.Column("inserted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_import_records_shipment_number", "import_records", ["shipment_number"])


def downgrade() -> None:
    op.drop_table("import_records")
    op.drop_table("shipment_details")
    op.drop_table("shipments")
    op.drop_table("route_legs")
    op.drop_table("pad_locations")
    op.drop_table("pull_points")
    op.drop_table("drivers")
    op.drop_table("vehicles")
    op.drop_table("contacts")
    op.drop_table("carriers")
