"""Tests for the reservation pull worker."""

from datetime import date, timedelta

import pytest

from db.models.external_mapping import EntityType
from db.models.reservation import ReservationStatus
from lib.beds24.api_client import Beds24APIError
from services.channel.conftest import HOTEL_ID, PROPERTY_ID, TODAY
from services.channel.errors import ConnectionNotFound, ProviderError

ARRIVAL = date(2025, 3, 10)


def booking(booking_id=9001, room_id=501, status="confirmed", guest_id=55, **overrides):
    raw = {
        "id": booking_id,
        "propertyId": int(PROPERTY_ID),
        "roomId": room_id,
        "status": status,
        "arrival": ARRIVAL.isoformat(),
        "departure": (ARRIVAL + timedelta(days=2)).isoformat(),
        "numAdult": 2,
        "firstName": "Ana",
        "lastName": "Silva",
        "email": "ana@example.com",
        "price": 240,
        "currency": "EUR",
        "referer": "Booking.com",
        "guestId": guest_id,
    }
    raw.update(overrides)
    return raw


@pytest.fixture
async def hotel(service, repos):
    pms = repos["pms"]
    pms.add_hotel(HOTEL_ID)
    pms.add_room_type(HOTEL_ID, "Double", physical_rooms=2, room_type_id="rt-1")
    pms.add_room_type(HOTEL_ID, "Suite", physical_rooms=1, room_type_id="rt-2")
    await service.mappings.upsert_bidirectional("beds24", EntityType.ROOM_TYPE, "501", "rt-1")
    await service.sync_state.ensure(HOTEL_ID)
    await service.sync_state.mark_bootstrapped(HOTEL_ID, {})
    return pms


@pytest.mark.no_db
class TestPullReservations:

    @pytest.mark.asyncio
    async def test_imports_new_booking(self, service, repos, fake_provider, hotel):
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1", trace_id="t-pull")

        assert result.total_found == 1
        assert result.total_imported == 1
        assert result.errors == []
        reservation = result.data[0]
        assert reservation.room_type_id == "rt-1"
        assert reservation.check_in == ARRIVAL
        assert reservation.check_out == ARRIVAL + timedelta(days=2)
        assert reservation.status == ReservationStatus.CONFIRMED
        assert reservation.adults == 2
        assert reservation.channel == "Booking.com"
        assert reservation.external_booking_id == "9001"

        guest = hotel.guests[reservation.guest_id]
        assert (guest.first_name, guest.email) == ("Ana", "ana@example.com")
        booking_map = await service.mappings.find_by_external_id("beds24", EntityType.BOOKING, "9001")
        assert booking_map.internal_id == reservation.id
        guest_map = await service.mappings.find_by_external_id("beds24", EntityType.GUEST, "55")
        assert guest_map.internal_id == guest.id
        assert await service.mappings.find_by_internal_id("beds24", "internal_guest", "55") is not None

    @pytest.mark.asyncio
    async def test_default_window_and_bookkeeping(self, service, repos, fake_provider, hotel, config):
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1")

        start = TODAY - timedelta(days=config.pull_lookback_days)
        assert fake_provider.calls[-1] == ("get_bookings", "stored-token", PROPERTY_ID, start, TODAY + timedelta(days=1))
        assert result.window == (start, TODAY + timedelta(days=1))
        assert result.credits_used == 1
        assert result.credits_remaining == 900

        conn = await repos["connections"].get_connection("conn-1")
        assert conn.last_sync_at is not None
        assert conn.credits_remaining == 900
        state = await service.sync_state.get(HOTEL_ID)
        assert state.cursors["bookings"] == TODAY.isoformat()
        assert state.last_status == "success"

    @pytest.mark.asyncio
    async def test_next_pull_starts_at_cursor(self, service, fake_provider, hotel):
        await service.pull("conn-1")
        await service.pull("conn-1")

        assert fake_provider.calls[-1][3] == TODAY

    @pytest.mark.asyncio
    async def test_explicit_range_does_not_move_cursor(self, service, fake_provider, hotel):
        window = (date(2024, 1, 1), date(2024, 1, 31))

        await service.pull("conn-1", date_range=window)

        assert fake_provider.calls[-1][3:] == window
        state = await service.sync_state.get(HOTEL_ID)
        assert "bookings" not in state.cursors

    @pytest.mark.asyncio
    async def test_second_pull_skips_imported_booking(self, service, repos, fake_provider, hotel):
        fake_provider.bookings = [booking()]

        await service.pull("conn-1")
        again = await service.pull("conn-1")

        assert again.total_found == 1
        assert again.total_imported == 0
        assert again.skipped == [{"booking_id": "9001", "reason": "already_imported"}]
        assert len(hotel.reservations) == 1
        assert len(hotel.guests) == 1

    @pytest.mark.asyncio
    async def test_repairs_missing_booking_mapping(self, service, fake_provider, hotel):
        existing = hotel.add_reservation("rt-1", ARRIVAL, ARRIVAL + timedelta(days=2), external_booking_id="9001")
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1")

        assert result.total_imported == 0
        assert result.skipped == [{"booking_id": "9001", "reason": "mapping_repaired"}]
        mapping = await service.mappings.find_by_external_id("beds24", EntityType.BOOKING, "9001")
        assert mapping.internal_id == existing.id
        assert len(hotel.reservations) == 1

    @pytest.mark.asyncio
    async def test_returning_guest_is_reused(self, service, fake_provider, hotel):
        fake_provider.bookings = [booking(9001), booking(9002, arrival="2025-04-01", departure="2025-04-03")]

        result = await service.pull("conn-1")

        assert result.total_imported == 2
        assert len(hotel.guests) == 1
        assert result.data[0].guest_id == result.data[1].guest_id


@pytest.mark.no_db
class TestPullEdgeCases:

    @pytest.mark.asyncio
    async def test_unmapped_room_falls_back_to_first_room_type(self, service, fake_provider, hotel):
        fake_provider.bookings = [booking(room_id=777)]

        result = await service.pull("conn-1")

        assert result.total_imported == 1
        assert result.data[0].room_type_id == "rt-1"
        assert result.room_type_fallbacks == ["9001"]

    @pytest.mark.asyncio
    async def test_unmapped_room_without_fallback_is_item_error(self, service, config, fake_provider, hotel):
        config.room_type_fallback = False
        fake_provider.bookings = [booking(9001, room_id=777), booking(9002)]

        result = await service.pull("conn-1")

        assert result.total_imported == 1
        assert result.errors[0]["booking_id"] == "9001"
        assert result.errors[0]["error"] == "mapping_not_found"
        assert result.status == "partial"

    @pytest.mark.asyncio
    async def test_unknown_status_is_imported_and_reported(self, service, fake_provider, hotel):
        fake_provider.bookings = [booking(status="vip-hold")]

        result = await service.pull("conn-1")

        assert result.data[0].status == ReservationStatus.CONFIRMED
        assert result.unknown_statuses == [{"booking_id": "9001", "status": "vip-hold"}]

    @pytest.mark.asyncio
    async def test_over_capacity_booking_is_imported_and_flagged(self, service, fake_provider, hotel):
        hotel.set_inventory("rt-1", ARRIVAL, allotment=0)
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1")

        assert result.total_imported == 1
        assert result.overbooked == ["9001"]

    @pytest.mark.asyncio
    async def test_over_capacity_rejected_when_overbooking_disabled(self, service, config, fake_provider, hotel):
        config.pull_allow_overbooking = False
        hotel.set_inventory("rt-1", ARRIVAL, allotment=0)
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1")

        assert result.total_imported == 0
        assert result.errors[0]["error"] == "capacity_error"
        assert hotel.reservations == {}

    @pytest.mark.asyncio
    async def test_cancelled_booking_skips_capacity_check(self, service, config, fake_provider, hotel):
        config.pull_allow_overbooking = False
        hotel.set_inventory("rt-1", ARRIVAL, allotment=0, stop_sell=True)
        fake_provider.bookings = [booking(status="cancelled")]

        result = await service.pull("conn-1")

        assert result.total_imported == 1
        assert result.data[0].status == ReservationStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_failed_mapping_write_rolls_back_reservation_and_guest(self, service, repos, fake_provider, hotel):
        repos["mappings"].fail_entity_types = {"booking"}
        fake_provider.bookings = [booking()]

        result = await service.pull("conn-1")

        assert result.total_imported == 0
        assert result.errors[0]["error"] == "import_failed"
        assert hotel.reservations == {}
        assert hotel.guests == {}

    @pytest.mark.asyncio
    async def test_invalid_booking_does_not_stop_batch(self, service, fake_provider, hotel):
        broken = booking(9001)
        del broken["arrival"]
        fake_provider.bookings = [broken, booking(9002)]

        result = await service.pull("conn-1")

        assert result.total_imported == 1
        assert result.errors[0]["booking_id"] == "9001"
        assert result.errors[0]["error"] == "invalid_payload"


@pytest.mark.no_db
class TestPullFailures:

    @pytest.mark.asyncio
    async def test_unknown_connection(self, service, repos):
        with pytest.raises(ConnectionNotFound):
            await service.pull("nope", trace_id="t-x")

        assert repos["audit"].records[-1].status == "error"

    @pytest.mark.asyncio
    async def test_provider_failure_is_raised_and_recorded(self, service, fake_provider, hotel):
        fake_provider.bookings = Beds24APIError("rate limited", status_code=429)

        with pytest.raises(ProviderError) as exc:
            await service.pull("conn-1")

        assert exc.value.status_code == 429
        state = await service.sync_state.get(HOTEL_ID)
        assert state.last_status == "error"
        assert "bookings" not in state.cursors


@pytest.mark.no_db
class TestScheduledPull:

    @pytest.mark.asyncio
    async def test_disabled_hotel_makes_no_provider_call(self, service, fake_provider, hotel):
        await service.sync_state.set_enabled(HOTEL_ID, False)

        assert await service.puller.run_scheduled(HOTEL_ID) is None
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_not_bootstrapped_hotel_is_skipped(self, service, fake_provider):
        await service.sync_state.ensure(HOTEL_ID)
        await service.sync_state.set_enabled(HOTEL_ID, True)

        assert await service.puller.run_scheduled(HOTEL_ID) is None
        assert fake_provider.calls == []

    @pytest.mark.asyncio
    async def test_enabled_hotel_is_pulled(self, service, fake_provider, hotel):
        fake_provider.bookings = [booking()]

        outcomes = await service.run_scheduled_pulls()

        assert outcomes[HOTEL_ID].total_imported == 1
