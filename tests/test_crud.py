"""
Tests for app/crud.py against a real Tortoise schema on in-memory SQLite.
Redis is the autouse mock from conftest.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import patch
from uuid import uuid4

import pytest
import pytest_asyncio
from tortoise import Tortoise, connections
from tortoise.exceptions import OperationalError

from app.crud import BookingCRUD
from app.errors import NotFoundError, StorageError, ValidationError
from app.models import Booking, BookingStatus, BookingStatusRecord, seed_statuses
from app.services import BookingService

from .conftest import make_mailer
from .factories import BOOKING_ID, CREATED, NOW, booking_record


@pytest_asyncio.fixture()
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["app.models"]},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    await seed_statuses()
    yield
    await connections.close_all()


@pytest.fixture()
def crud() -> BookingCRUD:
    return BookingCRUD()


class TestSeedStatuses:
    @pytest.mark.asyncio
    async def test_one_row_per_status_and_idempotent(self, db):
        await seed_statuses()
        rows = await BookingStatusRecord.all().order_by("id")
        assert [(r.id, r.name) for r in rows] == [(s.value, s.name) for s in BookingStatus]


class TestCreateAndResolve:
    @pytest.mark.asyncio
    async def test_create_then_read_back(self, db, crud, redis_mock):
        record = booking_record(request_note="Coffee")
        await crud.create_booking(record)

        private_id = await crud.resolve_private_id(BOOKING_ID)
        assert await crud.get_booking(private_id, BOOKING_ID) == record
        redis_mock.setex.assert_awaited()

    @pytest.mark.asyncio
    async def test_private_key_assigned_by_storage(self, db, crud):
        await crud.create_booking(booking_record())
        row = await Booking.get(external_id=BOOKING_ID)
        assert row.private_id >= 1
        assert row.external_id == BOOKING_ID

    @pytest.mark.asyncio
    async def test_resolve_unknown_raises_not_found(self, db, crud):
        with pytest.raises(NotFoundError, match="No booking id"):
            await crud.resolve_private_id(uuid4())

    @pytest.mark.asyncio
    async def test_resolve_malformed_raises_validation(self, db, crud):
        with pytest.raises(ValidationError):
            await crud.resolve_private_id("1234")

    @pytest.mark.asyncio
    async def test_stale_cached_key_never_reaches_another_booking(
        self, db, crud, redis_mock
    ):
        await crud.create_booking(booking_record())
        key = await crud.resolve_private_id(BOOKING_ID)
        missing = uuid4()
        redis_mock.get.return_value = str(key)

        assert await crud.resolve_private_id(missing) == key
        assert await crud.get_booking(key, missing) is None
        assert await crud.update_booking(key, booking_record(id=missing)) == 0
        assert (
            await crud.transition_status(
                key, missing, {BookingStatus.PENDING}, BookingStatus.APPROVED, NOW
            )
            == 0
        )
        assert await crud.delete_booking(key, missing) == 0
        assert (await crud.get_booking(key, BOOKING_ID)).status_id == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_resolve_bypassing_cache_reads_storage(self, db, crud, redis_mock):
        redis_mock.get.return_value = "42"
        with pytest.raises(NotFoundError):
            await crud.resolve_private_id(uuid4(), use_cache=False)
        redis_mock.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_service_get_with_stale_key_is_not_found(self, db, crud, redis_mock):
        await crud.create_booking(booking_record())
        key = await crud.resolve_private_id(BOOKING_ID)
        redis_mock.get.return_value = str(key)
        service = BookingService(crud, make_mailer())

        with pytest.raises(NotFoundError):
            await service.get_booking(uuid4())
        with pytest.raises(NotFoundError):
            await service.delete_booking(uuid4())
        assert await crud.get_booking(key, BOOKING_ID) is not None

    @pytest.mark.asyncio
    async def test_redis_failure_falls_back_to_storage(self, db, crud, redis_mock):
        await crud.create_booking(booking_record())
        redis_mock.get.side_effect = ConnectionError("redis down")
        assert await crud.resolve_private_id(BOOKING_ID) >= 1

    @pytest.mark.asyncio
    async def test_get_missing_key_returns_none(self, db, crud):
        assert await crud.get_booking(999, BOOKING_ID) is None


class TestListBookings:
    @pytest.mark.asyncio
    async def test_most_recently_updated_first(self, db, crud):
        ids = []
        for hours in (1, 3, 2):
            record = booking_record(id=uuid4(), updated_at=CREATED + timedelta(hours=hours))
            await crud.create_booking(record)
            ids.append(record.id)

        records = await crud.list_bookings()
        assert [r.id for r in records] == [ids[1], ids[2], ids[0]]

    @pytest.mark.asyncio
    async def test_offset_and_limit(self, db, crud):
        for hours in range(5):
            await crud.create_booking(
                booking_record(id=uuid4(), updated_at=CREATED + timedelta(hours=hours))
            )
        page = await crud.list_bookings(offset=1, limit=2)
        assert [r.updated_at for r in page] == [
            CREATED + timedelta(hours=3),
            CREATED + timedelta(hours=2),
        ]

    @pytest.mark.asyncio
    async def test_empty_table(self, db, crud):
        assert await crud.list_bookings() == []


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_rewrites_mutable_columns_only(self, db, crud):
        await crud.create_booking(booking_record())
        private_id = await crud.resolve_private_id(BOOKING_ID)

        changed = booking_record(
            org_id=uuid4(),
            created_at=NOW,
            updated_at=NOW,
            event_title="Team offsite",
            request_note="Late arrival",
        )
        assert await crud.update_booking(private_id, changed) == 1

        stored = await crud.get_booking(private_id, BOOKING_ID)
        assert stored.event_title == "Team offsite"
        assert stored.request_note == "Late arrival"
        assert stored.updated_at == NOW
        assert stored.created_at == CREATED
        assert stored.org_id != changed.org_id

    @pytest.mark.asyncio
    async def test_update_missing_row_affects_nothing(self, db, crud):
        assert await crud.update_booking(999, booking_record()) == 0

    @pytest.mark.asyncio
    async def test_transition_only_from_allowed_statuses(self, db, crud):
        await crud.create_booking(booking_record())
        private_id = await crud.resolve_private_id(BOOKING_ID)

        assert (
            await crud.transition_status(
                private_id, BOOKING_ID, {BookingStatus.PENDING}, BookingStatus.APPROVED, NOW
            )
            == 1
        )
        assert (
            await crud.transition_status(
                private_id, BOOKING_ID, {BookingStatus.PENDING}, BookingStatus.APPROVED, NOW
            )
            == 0
        )
        stored = await crud.get_booking(private_id, BOOKING_ID)
        assert stored.status_id == BookingStatus.APPROVED
        assert stored.updated_at == NOW

    @pytest.mark.asyncio
    async def test_transition_guarded_by_updated_at(self, db, crud):
        await crud.create_booking(booking_record(status_id=BookingStatus.APPROVED))
        private_id = await crud.resolve_private_id(BOOKING_ID)
        approved = {BookingStatus.APPROVED}

        stale = await crud.transition_status(
            private_id, BOOKING_ID, approved, BookingStatus.PENDING, NOW,
            expected_updated_at=NOW,
        )
        assert stale == 0
        current = await crud.transition_status(
            private_id, BOOKING_ID, approved, BookingStatus.PENDING, NOW,
            expected_updated_at=CREATED,
        )
        assert current == 1
        assert (await crud.get_booking(private_id, BOOKING_ID)).updated_at == NOW

    @pytest.mark.asyncio
    async def test_edit_inside_transaction(self, db, crud):
        await crud.create_booking(booking_record())
        private_id = await crud.resolve_private_id(BOOKING_ID)
        async with crud.transaction():
            current = await crud.get_booking(private_id, BOOKING_ID, for_update=True)
            await crud.update_booking(
                private_id, current.model_copy(update={"event_details": "No projector"})
            )
        assert (await crud.get_booking(private_id, BOOKING_ID)).event_details == "No projector"

    @pytest.mark.asyncio
    async def test_delete_removes_row_and_cache_entry(self, db, crud, redis_mock):
        await crud.create_booking(booking_record())
        private_id = await crud.resolve_private_id(BOOKING_ID)

        assert await crud.delete_booking(private_id, BOOKING_ID) == 1
        assert await crud.get_booking(private_id, BOOKING_ID) is None
        redis_mock.delete.assert_awaited_once_with(f"booking:pk:{BOOKING_ID}")
        assert await crud.delete_booking(private_id, BOOKING_ID) == 0


class TestStorageFaults:
    @pytest.mark.asyncio
    async def test_driver_error_becomes_storage_error(self, db, crud):
        with patch.object(Booking, "filter", side_effect=OperationalError("db down")):
            with pytest.raises(StorageError, match="Error while getting private id"):
                await crud.resolve_private_id(BOOKING_ID)

    @pytest.mark.asyncio
    async def test_duplicate_external_id_becomes_storage_error(self, db, crud):
        await crud.create_booking(booking_record())
        with pytest.raises(StorageError, match="adding a new booking"):
            await crud.create_booking(booking_record())
