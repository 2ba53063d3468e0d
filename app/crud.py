from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import UUID

from loguru import logger
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from tortoise.exceptions import BaseORMException
from tortoise.transactions import in_transaction

from app.cache import (
    get_private_id_cache,
    invalidate_private_id_cache,
    set_private_id_cache,
)
from app.errors import NotFoundError, StorageError, ValidationError
from app.models import Booking, BookingStatus
from app.schemas import BookingRecord

_uuid_adapter = TypeAdapter(UUID)


def parse_booking_id(booking_id: UUID | str) -> UUID:
    """Validate an external booking id, raising ValidationError if malformed."""
    if isinstance(booking_id, UUID):
        return booking_id
    try:
        return _uuid_adapter.validate_python(booking_id)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Error while validating id, id: {exc.errors()[0]['msg']}",
            [{"path": "id", "reason": exc.errors()[0]["msg"]}],
        ) from None


@contextmanager
def _storage_errors(operation: str, booking_id: UUID | None = None) -> Iterator[None]:
    """Turn ORM/driver faults into StorageError, logging the original."""
    try:
        yield
    except BaseORMException as exc:
        context = f"Error while {operation}" + (f" {booking_id}" if booking_id else "")
        logger.opt(exception=exc).error(context)
        raise StorageError(context) from exc


def _to_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.external_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        org_id=row.org_id,
        status_id=row.status_id,
        contact_name=row.contact_name,
        contact_email=row.contact_email,
        event_title=row.event_title,
        event_location_id=row.event_location_id,
        event_start=row.event_start,
        event_end=row.event_end,
        event_details=row.event_details,
        request_note=row.request_note,
    )


def _mutable_values(record: BookingRecord) -> dict:
    """Columns an edit may rewrite. id, created_at, org_id and location stay put."""
    return dict(
        updated_at=record.updated_at,
        status_id=int(record.status_id),
        contact_name=record.contact_name,
        contact_email=str(record.contact_email),
        event_title=record.event_title,
        event_start=record.event_start,
        event_end=record.event_end,
        event_details=record.event_details,
        request_note=record.request_note,
    )


class BookingCRUD:
    """
    Storage access for bookings. Every by-id operation works on the private
    storage key; resolve_private_id is the single place external ids are
    translated. Queries match the external id too, so a stale cached key
    never reaches another booking's row.
    """

    def transaction(self):
        return in_transaction()

    async def resolve_private_id(
        self, booking_id: UUID | str, use_cache: bool = True
    ) -> int:
        booking_id = parse_booking_id(booking_id)

        if use_cache:
            cached = await get_private_id_cache(booking_id)
            if cached is not None:
                return cached

        with _storage_errors("getting private id for booking", booking_id):
            keys = (
                await Booking.filter(external_id=booking_id)
                .limit(1)
                .values_list("private_id", flat=True)
            )
        if not keys:
            logger.info("No booking id {} found", booking_id)
            await invalidate_private_id_cache(booking_id)
            raise NotFoundError(f"No booking id {booking_id} found")

        private_id = int(keys[0])  # type: ignore[arg-type]
        await set_private_id_cache(booking_id, private_id)
        return private_id

    async def get_booking(
        self, private_id: int, booking_id: UUID, for_update: bool = False
    ) -> BookingRecord | None:
        with _storage_errors("getting the booking", booking_id):
            qs = Booking.filter(private_id=private_id, external_id=booking_id)
            if for_update:
                qs = qs.select_for_update()
            row = await qs.first()
        return _to_record(row) if row else None

    async def list_bookings(self, offset: int = 0, limit: int | None = None) -> list[BookingRecord]:
        with _storage_errors("getting all the bookings"):
            qs = Booking.all().order_by("-updated_at", "-private_id")
            if offset:
                qs = qs.offset(offset)
            if limit is not None:
                qs = qs.limit(limit)
            rows = await qs
        return [_to_record(r) for r in rows]

    async def create_booking(self, record: BookingRecord) -> BookingRecord:
        with _storage_errors("adding a new booking"):
            row = await Booking.create(
                external_id=record.id,
                created_at=record.created_at,
                org_id=record.org_id,
                event_location_id=record.event_location_id,
                **_mutable_values(record),
            )
        await set_private_id_cache(record.id, row.private_id)
        return record

    async def update_booking(self, private_id: int, record: BookingRecord) -> int:
        """Rewrite the mutable columns; returns the affected-row count."""
        with _storage_errors("editing the booking with id:", record.id):
            return await Booking.filter(
                private_id=private_id, external_id=record.id
            ).update(**_mutable_values(record))

    async def transition_status(
        self,
        private_id: int,
        booking_id: UUID,
        from_statuses: Iterable[BookingStatus],
        to_status: BookingStatus,
        updated_at: datetime,
        expected_updated_at: datetime | None = None,
    ) -> int:
        """
        Compare-and-swap on the current status: the row is only written when
        its status is one of `from_statuses` and, if given, its updated_at is
        still `expected_updated_at`. Returns the affected-row count.
        """
        with _storage_errors("updating the status of the booking", booking_id):
            qs = Booking.filter(
                private_id=private_id,
                external_id=booking_id,
                status_id__in=[int(s) for s in from_statuses],
            )
            if expected_updated_at is not None:
                qs = qs.filter(updated_at=expected_updated_at)
            return await qs.update(status_id=int(to_status), updated_at=updated_at)

    async def delete_booking(self, private_id: int, booking_id: UUID) -> int:
        with _storage_errors("deleting the booking with id:", booking_id):
            deleted = await Booking.filter(
                private_id=private_id, external_id=booking_id
            ).delete()
        await invalidate_private_id_cache(booking_id)
        return deleted


booking_crud = BookingCRUD()
