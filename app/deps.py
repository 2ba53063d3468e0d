from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

import httpx
from fastapi import Depends
from loguru import logger

from app import settings
from app.crud import BookingCRUD, booking_crud
from app.schemas import Booking
from app.services import BookingService

# ---------------------------------------------------------------------------
# Message formatting
# ---------------------------------------------------------------------------


def _mail_timezone() -> tzinfo:
    if settings.mail_timezone.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(settings.mail_timezone)


def pretty_format_date(value: datetime) -> str:
    """Human-readable rendering for emails, e.g. `06/01/2026, 10:00 AM`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(_mail_timezone()).strftime("%m/%d/%Y, %I:%M %p")


def confirmation_text(booking: Booking) -> str:
    note = (
        f"\nAdditional Notes: {booking.request_note}\n" if booking.request_note else ""
    )
    return (
        f"Dear {booking.contact.name},\n\n"
        "Your room booking has been confirmed. "
        "Here are the details of your reservation:\n\n"
        f"Event: {booking.event.title}\n"
        f"Date: {pretty_format_date(booking.event.start)} "
        f"to {pretty_format_date(booking.event.end)}\n"
        f"Details: {booking.event.details}\n"
        f"{note}\n"
        "If you need to make any changes to your booking or have any questions, "
        "please don't hesitate to contact us.\n\n"
        "Thank you for your booking!\n\n"
        "Best regards,\n"
        f"{settings.mail_sender_name}"
    )


# ---------------------------------------------------------------------------
# MailgunClient: thin async wrapper around the Mailgun messages API
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _get_mailgun_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.mailgun_api_url,
        auth=(settings.mailgun_username, settings.mailgun_api_key),
        timeout=httpx.Timeout(10.0),
    )


async def close_mailgun_http_client() -> None:
    if _get_mailgun_http_client.cache_info().currsize:
        await _get_mailgun_http_client().aclose()
        _get_mailgun_http_client.cache_clear()


class MailgunClient:
    """
    Sends booking confirmation emails through Mailgun.
    Failures are swallowed and reported as False; callers decide what a
    failed email means for the booking.
    """

    @property
    def _client(self) -> httpx.AsyncClient:
        return _get_mailgun_http_client()

    def _message(self, booking: Booking) -> dict[str, str]:
        domain = settings.mailgun_domain
        return {
            "from": f"{settings.mail_sender_name} <postmaster@{domain}>",
            "to": f"{booking.contact.name} <{booking.contact.email}>",
            "subject": f"Booking Confirmation - {booking.event.title}",
            "text": confirmation_text(booking),
        }

    async def send_booking_confirmation(self, booking: Booking) -> bool:
        """Returns True when Mailgun accepted the message, False on any error."""
        try:
            resp = await self._client.post(
                f"/{settings.mailgun_domain}/messages", data=self._message(booking)
            )
        except Exception:
            logger.opt(exception=True).error(
                "Mailgun request failed for booking {}", booking.id
            )
            return False

        if resp.status_code >= 400:
            logger.error(
                "Mailgun returned {} for booking {}: {}",
                resp.status_code,
                booking.id,
                resp.text,
            )
            return False

        logger.info(
            "Mailgun email sent to {} for booking {}", booking.contact.email, booking.id
        )
        return True


_mailer = MailgunClient()


def get_mailer() -> MailgunClient:
    return _mailer


# ---------------------------------------------------------------------------
# Storage and lifecycle service
# ---------------------------------------------------------------------------


def get_booking_crud() -> BookingCRUD:
    return booking_crud


def get_booking_service(
    crud: BookingCRUD = Depends(get_booking_crud),
    mailer: MailgunClient = Depends(get_mailer),
) -> BookingService:
    return BookingService(
        crud,
        mailer,
        rollback_on_email_failure=settings.rollback_approval_on_email_failure,
    )
