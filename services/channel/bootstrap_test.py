"""Tests for the bootstrap importer."""

from datetime import timedelta
from decimal import Decimal

import pytest

from db.models.external_mapping import EntityType
from lib.beds24.api_client import Beds24APIError, Beds24Timeout
from services.channel.conftest import HOTEL_ID, PROPERTY_ID, TODAY, make_calendar, make_property
from services.channel.errors import PartialImportError, ProviderError, ProviderTimeout


def three_day_calendar():
    return [
        make_calendar(501, [
            {"from": TODAY.isoformat(), "to": (TODAY + timedelta(days=1)).isoformat(), "numAvail": 2, "price1": 100},
            {"date": (TODAY + timedelta(days=2)).isoformat(), "numAvail": 1, "price1": "110.50", "stopSell": True},
        ]),
        make_calendar(999, [{"from": TODAY.isoformat(), "numAvail": 5}]),
    ]


@pytest.mark.no_db
class TestBootstrap:

    @pytest.mark.asyncio
    async def test_imports_hotel_rooms_and_calendar(self, service, repos, fake_provider):
        fake_provider.property = make_property()
        fake_provider.calendar = three_day_calendar()

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID, trace_id="t-boot")

        assert result.hotel.created == 1
        assert result.room_types.created == 2
        assert result.calendar.created == 3
        assert result.calendar.skipped == ["999"]
        assert result.total_imported == 6
        assert result.errors == []
        assert result.status == "success"

        pms = repos["pms"]
        assert pms.hotels[HOTEL_ID].name == "Harbour View"
        assert pms.hotels[HOTEL_ID].timezone == "Europe/Lisbon"
        double = await service.mappings.find_by_external_id("beds24", EntityType.ROOM_TYPE, "501")
        assert pms.room_types[double.internal_id].physical_rooms == 3
        assert await service.mappings.find_by_internal_id("beds24", "internal_room_type", "501") is not None

        day3 = pms.inventory[(double.internal_id, TODAY + timedelta(days=2))]
        assert day3.allotment == 1
        assert day3.stop_sell is True
        assert pms.rates[(double.internal_id, TODAY + timedelta(days=2))].rate == Decimal("110.50")

    @pytest.mark.asyncio
    async def test_calls_provider_with_calendar_window(self, service, fake_provider, config):
        fake_provider.property = make_property()

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert fake_provider.calls[0] == ("get_property", "stored-token", PROPERTY_ID)
        window_end = TODAY + timedelta(days=config.calendar_days - 1)
        assert fake_provider.calls[1] == ("get_rooms_calendar", "stored-token", PROPERTY_ID, TODAY, window_end)
        assert (result.window_start, result.window_end) == (TODAY, window_end)

    @pytest.mark.asyncio
    async def test_marks_sync_state_and_audits(self, service, repos, fake_provider):
        fake_provider.property = make_property()
        fake_provider.calendar = three_day_calendar()

        await service.bootstrap(HOTEL_ID, PROPERTY_ID, trace_id="t-boot")

        state = await service.sync_state.get(HOTEL_ID)
        assert state.enabled is True
        assert state.bootstrap_completed_at is not None
        assert state.cursors["calendar_from"] == TODAY.isoformat()
        assert state.metadata == {"property_id": PROPERTY_ID}
        records = [(r.operation, r.status) for r in repos["audit"].records if r.trace_id == "t-boot"]
        assert records == [("bootstrap", "running"), ("bootstrap", "success")]

    @pytest.mark.asyncio
    async def test_rerun_updates_instead_of_duplicating(self, service, repos, fake_provider):
        fake_provider.property = make_property()
        fake_provider.calendar = three_day_calendar()

        await service.bootstrap(HOTEL_ID, PROPERTY_ID)
        again = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert (again.hotel.created, again.hotel.updated) == (0, 1)
        assert (again.room_types.created, again.room_types.updated) == (0, 2)
        assert (again.calendar.created, again.calendar.updated) == (0, 3)
        assert len(repos["pms"].room_types) == 2
        assert len(repos["pms"].inventory) == 3

    @pytest.mark.asyncio
    async def test_missing_num_avail_uses_physical_rooms(self, service, repos, fake_provider):
        fake_provider.property = make_property()
        fake_provider.calendar = [make_calendar(502, [{"from": TODAY.isoformat(), "price1": 200}])]

        await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        suite = await service.mappings.find_by_external_id("beds24", EntityType.ROOM_TYPE, "502")
        assert repos["pms"].inventory[(suite.internal_id, TODAY)].allotment == 1

    @pytest.mark.asyncio
    async def test_no_room_types_skips_phase_two(self, service, fake_provider):
        fake_provider.property = make_property(rooms=[])
        fake_provider.calendar = [make_calendar(501, [{"from": TODAY.isoformat(), "numAvail": 1}])]

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert result.room_types.imported == 0
        assert result.calendar.skipped == ["501"]
        assert result.total_imported == 1


@pytest.mark.no_db
class TestBootstrapFailures:

    @pytest.mark.asyncio
    async def test_calendar_failure_keeps_earlier_phases(self, service, fake_provider):
        fake_provider.property = make_property()
        fake_provider.calendar = Beds24APIError("calendar exploded", status_code=500)

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert result.hotel.imported == 1
        assert result.room_types.imported == 2
        assert result.total_imported == 3
        assert result.status == "partial"
        assert result.errors[0]["phase"] == "calendar"
        assert result.errors[0]["status_code"] == 500
        with pytest.raises(PartialImportError) as exc:
            result.raise_for_errors()
        assert exc.value.result is result

    @pytest.mark.asyncio
    async def test_calendar_room_lookup_failure_keeps_earlier_phases(self, service, repos, fake_provider):
        # First run: phase 2 finds no existing mapping, so only phase 3 reads room types
        repos["pms"].fail_on = {"get_room_type"}
        fake_provider.property = make_property()
        fake_provider.calendar = three_day_calendar()

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert result.hotel.imported == 1
        assert result.room_types.imported == 2
        assert result.calendar.imported == 0
        assert result.calendar.errors == [{"room_id": "501", "error": "get_room_type failed"}]
        assert result.calendar.skipped == ["999"]
        assert result.status == "partial"
        state = await service.sync_state.get(HOTEL_ID)
        assert state.bootstrap_completed_at is not None
        assert state.last_status == "partial"

    @pytest.mark.asyncio
    async def test_hotel_write_failure_is_phase_error(self, service, repos, fake_provider):
        repos["pms"].fail_on = {"upsert_hotel"}
        fake_provider.property = make_property()

        result = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert result.hotel.imported == 0
        assert len(result.hotel.errors) == 1
        assert result.room_types.imported == 2

    @pytest.mark.asyncio
    async def test_one_bad_room_type_does_not_stop_the_others(self, service, repos, fake_provider):
        fake_provider.property = make_property()
        await service.bootstrap(HOTEL_ID, PROPERTY_ID)
        repos["pms"].fail_on = {"update_room_type"}

        again = await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert again.room_types.imported == 0
        assert [e["room_id"] for e in again.room_types.errors] == ["501", "502"]
        assert again.hotel.imported == 1

    @pytest.mark.asyncio
    async def test_property_fetch_failure_is_raised_and_audited(self, service, repos, fake_provider):
        fake_provider.property = Beds24APIError("not found", status_code=404)

        with pytest.raises(ProviderError) as exc:
            await service.bootstrap(HOTEL_ID, PROPERTY_ID, trace_id="t-fail")

        assert exc.value.status_code == 404
        assert exc.value.trace_id == "t-fail"
        final = repos["audit"].records[-1]
        assert (final.operation, final.status, final.trace_id) == ("bootstrap", "error", "t-fail")
        state = await service.sync_state.get(HOTEL_ID)
        assert state.last_status == "error"
        assert state.bootstrap_completed_at is None

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self, service, fake_provider):
        fake_provider.property = Beds24Timeout("timed out")

        with pytest.raises(ProviderTimeout) as exc:
            await service.bootstrap(HOTEL_ID, PROPERTY_ID)

        assert exc.value.retryable is True
