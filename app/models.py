from enum import IntEnum

from tortoise import fields
from tortoise.models import Model


class BookingStatus(IntEnum):
    PENDING = 0  # just submitted, awaiting approval
    APPROVED = 1  # approved, confirmation email sent
    DENIED = 2  # refused by the venue
    CANCELLED = 3  # withdrawn after submission or approval


class BookingStatusRecord(Model):
    """Lookup table for BookingStatus, seeded once at startup."""

    id = fields.IntField(primary_key=True, generated=False)
    name = fields.TextField()

    class Meta:  # type: ignore
        table = "booking_status"


class Booking(Model):
    private_id = fields.IntField(primary_key=True)  # storage key, never exposed
    external_id = fields.UUIDField(unique=True, source_field="id")

    created_at = fields.DatetimeField()
    updated_at = fields.DatetimeField()

    org_id = fields.UUIDField()
    status: fields.ForeignKeyRelation[BookingStatusRecord] = fields.ForeignKeyField(
        "models.BookingStatusRecord",
        related_name="bookings",
        on_delete=fields.RESTRICT,
    )

    contact_name = fields.TextField()
    contact_email = fields.TextField()

    event_title = fields.TextField()
    event_location_id = fields.UUIDField()
    event_start = fields.DatetimeField()
    event_end = fields.DatetimeField()
    event_details = fields.TextField()

    request_note = fields.TextField(null=True)

    status_id: int

    class Meta:  # type: ignore
        table = "bookings"
        ordering = ["-updated_at"]


async def seed_statuses() -> None:
    """Insert the fixed BookingStatus rows if they are missing."""
    for member in BookingStatus:
        await BookingStatusRecord.get_or_create(
            id=member.value, defaults={"name": member.name}
        )
