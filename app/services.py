"""
Booking lifecycle operations.

BookingService orchestrates validation, id resolution, conversion and
storage for each operation and owns the status transition rules. Storage and
the mailer are passed in, so routes get the real ones through FastAPI
dependencies and tests can hand in fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from app.convert import new_record, to_external, utcnow
from app.crud import BookingCRUD, parse_booking_id
from app.errors import (
    ConflictError,
    NotFoundError,
    NothingToUpdateError,
    NotificationError,
    StorageError,
    ValidationError,
)
from app.models import BookingStatus
from app.schemas import (
    Booking,
    BookingContactUpdate,
    BookingCreate,
    BookingEventUpdate,
    BookingRecord,
    BookingUpdate,
    to_utc_second,
)

if TYPE_CHECKING:
    from app.deps import MailgunClient


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------

# Approval is refused only when the booking is already approved.
_VALID_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.APPROVED,
        BookingStatus.DENIED,
        BookingStatus.CANCELLED,
    },
    BookingStatus.APPROVED: {BookingStatus.CANCELLED},
    BookingStatus.DENIED: {BookingStatus.APPROVED},
    BookingStatus.CANCELLED: {BookingStatus.APPROVED},
}


def _sources(target: BookingStatus) -> set[BookingStatus]:
    return {s for s, targets in _VALID_TRANSITIONS.items() if target in targets}


def _assert_transition(
    booking_id: UUID, old_status: BookingStatus, new_status: BookingStatus
) -> None:
    if old_status == new_status == BookingStatus.APPROVED:
        raise ConflictError(f"The booking id {booking_id} has already been approved")
    allowed = _VALID_TRANSITIONS.get(old_status, set())
    if new_status not in allowed:
        raise ConflictError(
            f"Cannot transition booking id {booking_id} from "
            f"'{old_status.name}' to '{new_status.name}'. "
            f"Allowed: {sorted(s.name for s in allowed)}"
        )


# ---------------------------------------------------------------------------
# Partial update merge
# ---------------------------------------------------------------------------


def _pick(new, old):
    return old if new is None else new


def merge_update(
    current: BookingRecord, update: BookingUpdate, now: datetime
) -> BookingRecord:
    """
    Overlay the supplied fields of `update` on the stored row and re-validate.
    A null for a required field keeps the stored value; a null or empty note
    clears it. id, created_at, org_id and event_location_id never change.
    """
    contact = update.contact or BookingContactUpdate()
    event = update.event or BookingEventUpdate()

    if "request_note" in update.model_fields_set:
        request_note = update.request_note or None
    else:
        request_note = current.request_note

    merged = {
        **current.model_dump(),
        "updated_at": now,
        "status_id": _pick(update.status, current.status_id),
        "contact_name": _pick(contact.name, current.contact_name),
        "contact_email": _pick(contact.email, current.contact_email),
        "event_title": _pick(event.title, current.event_title),
        "event_start": _pick(event.start, current.event_start),
        "event_end": _pick(event.end, current.event_end),
        "event_details": _pick(event.details, current.event_details),
        "request_note": request_note,
    }
    try:
        return BookingRecord.model_validate(merged)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BookingService:
    def __init__(
        self,
        crud: BookingCRUD,
        mailer: MailgunClient,
        rollback_on_email_failure: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.crud = crud
        self.mailer = mailer
        self.rollback_on_email_failure = rollback_on_email_failure
        self.clock = clock

    async def _resolve(self, booking_id: UUID | str) -> tuple[UUID, int]:
        booking_id = parse_booking_id(booking_id)
        return booking_id, await self.crud.resolve_private_id(booking_id)

    async def _load(
        self,
        booking_id: UUID,
        private_id: int,
        missing_message: str,
        for_update: bool = False,
    ) -> tuple[int, BookingRecord]:
        """
        Fetch the row behind a resolved key. A key that no longer belongs to
        this booking (stale cache entry) is resolved again from storage.
        """
        record = await self.crud.get_booking(private_id, booking_id, for_update=for_update)
        if record is None:
            logger.info("Key {} no longer matches booking {}, resolving again", private_id, booking_id)
            private_id = await self.crud.resolve_private_id(booking_id, use_cache=False)
            record = await self.crud.get_booking(
                private_id, booking_id, for_update=for_update
            )
        if record is None:
            logger.info("The booking id {} does not exist", booking_id)
            raise NotFoundError(missing_message)
        return private_id, record

    async def list_bookings(
        self, offset: int = 0, limit: int | None = None
    ) -> list[Booking]:
        records = await self.crud.list_bookings(offset=offset, limit=limit)
        if not records:
            logger.info("No data in the bookings table")
            raise NotFoundError("No data in the bookings table", data=[])
        return [to_external(r) for r in records]

    async def get_booking(self, booking_id: UUID | str) -> Booking:
        booking_id, private_id = await self._resolve(booking_id)
        _, record = await self._load(
            booking_id, private_id, f"No data for the booking id: {booking_id}"
        )
        return to_external(record)

    async def create_booking(self, payload: BookingCreate) -> Booking:
        try:
            record = new_record(payload, self.clock())
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from None

        await self.crud.create_booking(record)
        logger.info("Added booking {}", record.id)
        return to_external(record)

    async def delete_booking(self, booking_id: UUID | str) -> Booking:
        booking_id, private_id = await self._resolve(booking_id)
        private_id, record = await self._load(
            booking_id, private_id, f"No booking id {booking_id} found"
        )

        deleted = await self.crud.delete_booking(private_id, booking_id)
        if not deleted:
            logger.info("No booking id {} found", booking_id)
            raise NotFoundError(f"No booking id {booking_id} found")

        logger.info("Deleted booking {}", booking_id)
        return to_external(record)

    async def edit_booking(
        self, booking_id: UUID | str, payload: BookingUpdate | None
    ) -> Booking:
        booking_id, private_id = await self._resolve(booking_id)

        if payload is None or not payload.supplied_fields():
            logger.info("No data to update for booking id {}", booking_id)
            raise NothingToUpdateError(f"No data to update for booking id {booking_id}")

        if payload.status is not None:
            logger.warning(
                "Booking {} status edited directly to {}, transition rules not applied",
                booking_id,
                payload.status.name,
            )

        async with self.crud.transaction():
            private_id, current = await self._load(
                booking_id,
                private_id,
                f"No data for the booking id: {booking_id}",
                for_update=True,
            )
            merged = merge_update(current, payload, self.clock())
            updated = await self.crud.update_booking(private_id, merged)

        if not updated:
            logger.info("No booking id {} found", booking_id)
            raise NotFoundError(f"No booking id {booking_id} found")

        logger.info("Edited booking {}", booking_id)
        return to_external(merged)

    async def _transition(
        self, booking_id: UUID | str, target: BookingStatus
    ) -> tuple[int, BookingRecord, BookingRecord]:
        """
        Move a booking to `target`. Returns the private key plus the row
        before and after the change.
        """
        booking_id, private_id = await self._resolve(booking_id)
        private_id, current = await self._load(
            booking_id, private_id, f"No booking id {booking_id} found"
        )
        _assert_transition(booking_id, current.status_id, target)

        now = to_utc_second(self.clock())
        changed = await self.crud.transition_status(
            private_id, booking_id, _sources(target), target, now
        )
        if not changed:
            # Lost a race with a concurrent change: report what happened.
            latest = await self.crud.get_booking(private_id, booking_id)
            if latest is None:
                raise NotFoundError(f"No booking id {booking_id} found")
            _assert_transition(booking_id, latest.status_id, target)
            raise ConflictError(f"The booking id {booking_id} changed while updating")

        updated = current.model_copy(update={"status_id": target, "updated_at": now})
        logger.info("Booking {} moved to {}", booking_id, target.name)
        return private_id, current, updated

    async def _revert_approval(
        self, private_id: int, before: BookingRecord, after: BookingRecord
    ) -> None:
        """Undo an approval whose confirmation email failed, if nothing else touched the row."""
        booking = to_external(after)
        approved = booking.model_dump(mode="json", by_alias=True)
        try:
            reverted = await self.crud.transition_status(
                private_id,
                after.id,
                {BookingStatus.APPROVED},
                before.status_id,
                before.updated_at,
                expected_updated_at=after.updated_at,
            )
        except StorageError:
            logger.opt(exception=True).error(
                "Could not revert approval of booking {} after email failure", after.id
            )
            raise NotificationError(
                "Error while trying to send the email, reverting the approval failed",
                data=approved,
            ) from None

        if not reverted:
            logger.warning(
                "Booking {} changed after approval, approval kept despite email failure",
                after.id,
            )
            raise NotificationError(
                "Error while trying to send the email, the booking changed "
                "meanwhile and the approval was kept",
                data=approved,
            )

        logger.warning(
            "Confirmation email failed for booking {}, approval reverted", after.id
        )
        raise NotificationError(
            "Error while trying to send the email, the approval has been reverted"
        )

    async def approve_booking(self, booking_id: UUID | str) -> Booking:
        private_id, before, after = await self._transition(
            booking_id, BookingStatus.APPROVED
        )
        booking = to_external(after)

        if await self.mailer.send_booking_confirmation(booking):
            return booking

        if self.rollback_on_email_failure:
            await self._revert_approval(private_id, before, after)

        logger.error(
            "Confirmation email failed for booking {}, approval kept", booking.id
        )
        raise NotificationError(
            "Error while trying to send the email",
            data=booking.model_dump(mode="json", by_alias=True),
        )

    async def deny_booking(self, booking_id: UUID | str) -> Booking:
        _, _, after = await self._transition(booking_id, BookingStatus.DENIED)
        return to_external(after)

    async def cancel_booking(self, booking_id: UUID | str) -> Booking:
        _, _, after = await self._transition(booking_id, BookingStatus.CANCELLED)
        return to_external(after)
