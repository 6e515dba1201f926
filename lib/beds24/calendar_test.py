"""Tests for calendar line building and merging."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from lib.beds24.calendar import (
    CalendarChanges,
    CalendarLine,
    batched,
    build_calendar_lines,
    merge_contiguous_lines,
    to_payload,
)


@pytest.mark.no_db
class TestCalendarChanges:

    def test_only_set_fields_are_sent(self):
        changes = CalendarChanges(rate=Decimal("120"), stop_sell=False)
        assert changes.provider_fields() == {"price1": 120.0, "stopSell": False}

    def test_accepts_provider_style_names(self):
        changes = CalendarChanges.model_validate({"minStay": 2, "closedArrival": True})
        assert changes.provider_fields() == {"minStay": 2, "closedArrival": True}

    def test_availability_maps_to_num_avail(self):
        assert CalendarChanges(availability=3).provider_fields() == {"numAvail": 3}

    def test_empty_changes_rejected(self):
        with pytest.raises(ValidationError):
            CalendarChanges()

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            CalendarChanges(rate=Decimal("-1"))


@pytest.mark.no_db
class TestBuildAndMerge:

    def test_one_line_per_day_inclusive(self):
        lines = build_calendar_lines("501", date(2025, 5, 1), date(2025, 5, 3), CalendarChanges(rate=Decimal("99")))
        assert [line.from_date for line in lines] == [date(2025, 5, 1), date(2025, 5, 2), date(2025, 5, 3)]
        assert all(line.fields == {"price1": 99.0} for line in lines)

    def test_end_before_start(self):
        with pytest.raises(ValueError):
            build_calendar_lines("501", date(2025, 5, 3), date(2025, 5, 1), CalendarChanges(rate=Decimal("99")))

    def test_identical_days_merge_into_range(self):
        lines = build_calendar_lines("501", date(2025, 5, 1), date(2025, 5, 10), CalendarChanges(availability=2))
        merged = merge_contiguous_lines(lines)
        assert len(merged) == 1
        assert merged[0].from_date == date(2025, 5, 1)
        assert merged[0].to_date == date(2025, 5, 10)
        assert merged[0].nights == 10

    def test_different_values_break_the_run(self):
        lines = [
            CalendarLine("501", date(2025, 5, 1), date(2025, 5, 1), {"price1": 100.0}),
            CalendarLine("501", date(2025, 5, 2), date(2025, 5, 2), {"price1": 100.0}),
            CalendarLine("501", date(2025, 5, 3), date(2025, 5, 3), {"price1": 120.0}),
        ]
        merged = merge_contiguous_lines(lines)
        assert [(m.from_date, m.to_date) for m in merged] == [
            (date(2025, 5, 1), date(2025, 5, 2)),
            (date(2025, 5, 3), date(2025, 5, 3)),
        ]

    def test_gap_breaks_the_run(self):
        lines = [
            CalendarLine("501", date(2025, 5, 1), date(2025, 5, 1), {"numAvail": 1}),
            CalendarLine("501", date(2025, 5, 3), date(2025, 5, 3), {"numAvail": 1}),
        ]
        assert len(merge_contiguous_lines(lines)) == 2

    def test_merge_does_not_mutate_input(self):
        lines = build_calendar_lines("501", date(2025, 5, 1), date(2025, 5, 2), CalendarChanges(availability=1))
        merge_contiguous_lines(lines)
        assert lines[0].to_date == date(2025, 5, 1)


@pytest.mark.no_db
class TestBatchingAndPayload:

    def test_batches_of_fifty(self):
        lines = [CalendarLine("501", date(2025, 1, 1), date(2025, 1, 1), {"numAvail": i}) for i in range(120)]
        batches = batched(lines, 50)
        assert [len(b) for b in batches] == [50, 50, 20]

    def test_payload_groups_by_room(self):
        lines = [
            CalendarLine("501", date(2025, 5, 1), date(2025, 5, 4), {"price1": 80.0}),
            CalendarLine("abc", date(2025, 5, 1), date(2025, 5, 1), {"stopSell": True}),
        ]
        assert to_payload(lines) == [
            {"roomId": 501, "calendar": [{"from": "2025-05-01", "to": "2025-05-04", "price1": 80.0}]},
            {"roomId": "abc", "calendar": [{"from": "2025-05-01", "to": "2025-05-01", "stopSell": True}]},
        ]
