"""
Mapping between the flat storage record and the nested external booking.

Both directions are pure. The only lossy step is the request note: a null or
empty note in storage becomes an absent note in the external form.
"""

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from app.models import BookingStatus
from app.schemas import (
    Booking,
    BookingContact,
    BookingCreate,
    BookingEvent,
    BookingRecord,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_external(record: BookingRecord) -> Booking:
    return Booking(
        id=record.id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        org_id=record.org_id,
        status=record.status_id,
        contact=BookingContact(name=record.contact_name, email=record.contact_email),
        event=BookingEvent(
            title=record.event_title,
            location_id=record.event_location_id,
            start=record.event_start,
            end=record.event_end,
            details=record.event_details,
        ),
        request_note=record.request_note or None,
    )


def to_record(booking: Booking) -> BookingRecord:
    return BookingRecord(
        id=booking.id,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
        org_id=booking.org_id,
        status_id=booking.status,
        contact_name=booking.contact.name,
        contact_email=booking.contact.email,
        event_title=booking.event.title,
        event_location_id=booking.event.location_id,
        event_start=booking.event.start,
        event_end=booking.event.end,
        event_details=booking.event.details,
        request_note=booking.request_note or None,
    )


def new_record(payload: BookingCreate, now: datetime | None = None) -> BookingRecord:
    """
    Storage row for a freshly submitted booking. Identifiers, status and
    timestamps are minted here; everything else comes from the client.
    """
    now = now or utcnow()
    return BookingRecord(
        id=uuid4(),
        created_at=now,
        updated_at=now,
        org_id=uuid4(),
        status_id=BookingStatus.PENDING,
        contact_name=payload.contact.name,
        contact_email=payload.contact.email,
        event_title=payload.event.title,
        event_location_id=uuid4(),
        event_start=payload.event.start,
        event_end=payload.event.end,
        event_details=payload.event.details,
        request_note=payload.request_note or None,
    )
