from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Generic, TypeVar
from uuid import UUID

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    model_serializer,
)
from pydantic.alias_generators import to_camel

from app.models import BookingStatus

# ---------------------------------------------------------------------------
# Field types shared by the external and storage forms
# ---------------------------------------------------------------------------


def to_utc_second(value: datetime) -> datetime:
    """UTC-aware datetime with fractional seconds dropped (not rounded)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    """Canonical `YYYY-MM-DDThh:mm:ssZ` form."""
    return to_utc_second(value).replace(tzinfo=None).isoformat(timespec="seconds") + "Z"


def _coerce_status(value: Any) -> Any:
    """Accept a status by name (any case) as well as by integer value."""
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value)
        try:
            return BookingStatus[value.strip().upper()]
        except KeyError:
            raise ValueError(
                f"status must be one of {[s.name for s in BookingStatus]}"
            ) from None
    return value


Timestamp = Annotated[
    datetime,
    AfterValidator(to_utc_second),
    PlainSerializer(format_timestamp, return_type=str),
]

# External form renders the status by name.
Status = Annotated[
    BookingStatus,
    BeforeValidator(_coerce_status),
    PlainSerializer(lambda s: BookingStatus(s).name, return_type=str),
]

ContactName = Annotated[str, Field(min_length=2)]
EventTitle = Annotated[str, Field(min_length=3)]
EventDetails = Annotated[str, Field(max_length=500)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# External form
# ---------------------------------------------------------------------------


class BookingContact(_CamelModel):
    name: ContactName
    email: EmailStr


class BookingEvent(_CamelModel):
    title: EventTitle
    location_id: UUID
    start: Timestamp
    end: Timestamp
    details: EventDetails


class Booking(_CamelModel):
    """Booking as returned to clients."""

    id: UUID
    created_at: Timestamp
    updated_at: Timestamp
    org_id: UUID
    status: Status
    contact: BookingContact
    event: BookingEvent
    request_note: str | None = None

    @model_serializer(mode="wrap")
    def omit_missing_note(self, handler):
        data = handler(self)
        for key in ("requestNote", "request_note"):
            if key in data and data[key] is None:
                del data[key]
        return data


# ---------------------------------------------------------------------------
# Storage form
# ---------------------------------------------------------------------------


class BookingRecord(BaseModel):
    """Flat row of the bookings table, minus the private storage key."""

    id: UUID
    created_at: Timestamp
    updated_at: Timestamp
    org_id: UUID
    status_id: BookingStatus
    contact_name: ContactName
    contact_email: EmailStr
    event_title: EventTitle
    event_location_id: UUID
    event_start: Timestamp
    event_end: Timestamp
    event_details: EventDetails
    request_note: str | None = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class BookingEventCreate(_CamelModel):
    # locationId is minted by the server; a client value is ignored.
    title: EventTitle
    start: Timestamp
    end: Timestamp
    details: EventDetails


class BookingCreate(_CamelModel):
    contact: BookingContact
    event: BookingEventCreate
    request_note: str | None = None


class BookingContactUpdate(_CamelModel):
    name: ContactName | None = None
    email: EmailStr | None = None


class BookingEventUpdate(_CamelModel):
    title: EventTitle | None = None
    start: Timestamp | None = None
    end: Timestamp | None = None
    details: EventDetails | None = None


class BookingUpdate(_CamelModel):
    """
    Partial edit. A field counts as supplied when its key is present in the
    body, even with a null value; unknown keys are ignored.
    """

    status: Status | None = None
    contact: BookingContactUpdate | None = None
    event: BookingEventUpdate | None = None
    request_note: str | None = None

    def supplied_fields(self) -> set[str]:
        supplied = set()
        for name in ("status", "request_note"):
            if name in self.model_fields_set:
                supplied.add(name)
        for name in ("contact", "event"):
            nested = getattr(self, name)
            if nested is not None:
                supplied |= {f"{name}.{f}" for f in nested.model_fields_set}
        return supplied


class BookingListParams(BaseModel):
    """Bind to a FastAPI route via Depends(BookingListParams)."""

    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1, le=1000)


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    status: int
    message: str
    data: T | None = None
