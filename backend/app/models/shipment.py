"""ORM models for the shipment aggregate written by the shipment engine."""

from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

INPUT_METHOD_IMPORT = "IMPORT"


class Shipment(Base, TimestampMixin):
    __tablename__ = "shipments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    carrier_id: Mapped[int] = mapped_column(ForeignKey("carriers.id"), nullable=False)
    contact_id: Mapped[int] = mapped_column(ForeignKey("contacts.id"), nullable=False)
    vehicle_id: Mapped[int | None] = mapped_column(ForeignKey("vehicles.id"), nullable=True)
    route_leg_id: Mapped[int] = mapped_column(
        ForeignKey("route_legs.id"), nullable=False, index=True
    )
    load_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Optional per deployment (see app.capabilities.OptionalField)
    delivery_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_finished: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    details: Mapped[list["ShipmentDetail"]] = relationship(back_populates="shipment")


class ShipmentDetail(Base, TimestampMixin):
    __tablename__ = "shipment_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shipment_id: Mapped[int] = mapped_column(
        ForeignKey("shipments.id"), nullable=False, index=True
    )
    input_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    input_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    shipment_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    truck_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    trailer_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    miles: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Optional per deployment (see app.capabilities.OptionalField)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ticket_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    net_lbs: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tons: Mapped[float | None] = mapped_column(Float, nullable=True)
    bol_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    bol_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    shipment: Mapped["Shipment"] = relationship(back_populates="details")
