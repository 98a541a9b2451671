"""ORM model for raw vendor import records awaiting reconciliation.

Records are created upstream. The shipment engine only ever writes the
tracking columns and, during BOL supersession, the attachment columns of
*other* records.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class ImportRecord(Base, TimestampMixin):
    __tablename__ = "import_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payload_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload_original: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Structured columns, present on some deployments only
    jobname: Mapped[str | None] = mapped_column(String(200), nullable=True)
    carrier: Mapped[str | None] = mapped_column(Text, nullable=True)
    truck: Mapped[str | None] = mapped_column(String(200), nullable=True)
    terminal: Mapped[str | None] = mapped_column(String(200), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    delivery_time: Mapped[str | None] = mapped_column(String(50), nullable=True)
    shipment_number: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    ticket_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Attachments
    image_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    image_original: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Tracking (advisory; derivable from shipment_details back-references)
    is_inserted: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    shipment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    shipment_detail_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    inserted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
