from uuid import UUID

from fastapi import APIRouter, Body, Depends

from app.deps import get_booking_service
from app.schemas import (
    Booking,
    BookingCreate,
    BookingListParams,
    BookingUpdate,
    Envelope,
)
from app.services import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("", response_model=Envelope[list[Booking]])
async def list_bookings(
    params: BookingListParams = Depends(),
    service: BookingService = Depends(get_booking_service),
) -> Envelope[list[Booking]]:
    bookings = await service.list_bookings(offset=params.offset, limit=params.limit)
    return Envelope[list[Booking]](
        status=200, message="All data from bookings table retrieved", data=bookings
    )


@router.post("", response_model=Envelope[Booking])
async def create_booking(
    payload: BookingCreate,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.create_booking(payload)
    return Envelope[Booking](status=200, message="Added a new booking", data=booking)


@router.get("/{booking_id}", response_model=Envelope[Booking])
async def get_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.get_booking(booking_id)
    return Envelope[Booking](
        status=200, message=f"Retrieved data for booking id {booking_id}", data=booking
    )


@router.patch("/{booking_id}", response_model=Envelope[Booking])
async def edit_booking(
    booking_id: UUID,
    payload: BookingUpdate | None = Body(default=None),
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.edit_booking(booking_id, payload)
    return Envelope[Booking](
        status=200, message=f"Booking id: {booking_id} edited", data=booking
    )


@router.delete("/{booking_id}", response_model=Envelope[Booking])
async def delete_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.delete_booking(booking_id)
    return Envelope[Booking](
        status=200, message=f"Booking id {booking_id} deleted", data=booking
    )


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@router.post("/{booking_id}/approve", response_model=Envelope[Booking])
async def approve_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.approve_booking(booking_id)
    return Envelope[Booking](
        status=200,
        message=f"Email correctly sent to email address: {booking.contact.email}",
        data=booking,
    )


@router.post("/{booking_id}/deny", response_model=Envelope[Booking])
async def deny_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.deny_booking(booking_id)
    return Envelope[Booking](
        status=200, message=f"Booking id {booking_id} denied", data=booking
    )


@router.post("/{booking_id}/cancel", response_model=Envelope[Booking])
async def cancel_booking(
    booking_id: UUID,
    service: BookingService = Depends(get_booking_service),
) -> Envelope[Booking]:
    booking = await service.cancel_booking(booking_id)
    return Envelope[Booking](
        status=200, message=f"Booking id {booking_id} cancelled", data=booking
    )
