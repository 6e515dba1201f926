"""Inventory reconciliation.

A stay occupies the nights check_in .. check_out - 1. It is bookable only if
every one of those nights has capacity, so the available count for a range is
the minimum over its nights, never the average:

    available_rooms = max(0, min(allotment[d] - booked[d] for d in nights))

Day restrictions are checked first and are specific to a day: stop-sell
blocks any night of the stay, closed-to-arrival only the check-in day and
closed-to-departure only the check-out day. Restrictions are not lifted by
allow_overbooking.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional

from loguru import logger

from db.models.hotel import RoomType
from db.models.inventory_day import InventoryDay
from db.models.reservation import Reservation
from services.channel.errors import CapacityError, RoomTypeNotFound
from services.channel.pms_repo import IPMSRepo, PMSRepo

REASON_STOP_SELL = "stop_sell"
REASON_CLOSED_TO_ARRIVAL = "closed_to_arrival"
REASON_CLOSED_TO_DEPARTURE = "closed_to_departure"
REASON_MIN_STAY = "min_stay"
REASON_MAX_STAY = "max_stay"
REASON_NO_AVAILABILITY = "no_availability"
REASON_OVERBOOKED = "overbooked"


@dataclass
class Availability:
    available: bool
    available_rooms: int
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"available": self.available, "available_rooms": self.available_rooms}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class DayStatus:
    date: date
    allotment: int
    booked: int
    available: int
    stop_sell: bool = False
    closed_to_arrival: bool = False
    closed_to_departure: bool = False

    @property
    def overbooked_by(self) -> int:
        return max(0, self.booked - self.allotment)


def nights(check_in: date, check_out: date) -> List[date]:
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def booked_on(reservations: List[Reservation], night: date) -> int:
    return sum(1 for r in reservations if r.is_active and r.occupies(night))


class InventoryEngine:
    """Availability checks over the PMS inventory calendar."""

    def __init__(self, repo: Optional[IPMSRepo] = None):
        self._repo = repo or PMSRepo()

    async def _room_type(self, room_type_id: str) -> RoomType:
        room_type = await self._repo.get_room_type(room_type_id)
        if room_type is None:
            raise RoomTypeNotFound(f"Room type {room_type_id} not found")
        return room_type

    async def check_availability(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        allow_overbooking: bool = False,
        exclude_reservation_id: Optional[str] = None,
        rooms: int = 1,
    ) -> Availability:
        """Can `rooms` rooms of this type be sold for [check_in, check_out)?

        exclude_reservation_id leaves one reservation out of the count, for
        checking a modification of that reservation.
        """
        if check_out <= check_in:
            raise ValueError(f"check_out {check_out} must be after check_in {check_in}")
        if rooms < 1:
            raise ValueError("rooms must be at least 1")

        room_type = await self._room_type(room_type_id)
        stay_nights = nights(check_in, check_out)

        # Load through check_out: departure restrictions live on that day
        rows = await self._repo.get_inventory_days(room_type_id, check_in, check_out)
        by_date: Dict[date, InventoryDay] = {row.date: row for row in rows}

        reason = self._restriction(by_date, check_in, check_out, stay_nights)
        if reason:
            return Availability(available=False, available_rooms=0, reason=reason)

        overlapping = await self._repo.get_overlapping_reservations(
            room_type_id, check_in, check_out, exclude_reservation_id
        )

        night_rows = [by_date[n] for n in stay_nights if n in by_date]
        if not night_rows:
            # No calendar for the stay; fall back to the physical room count
            available_rooms = room_type.physical_rooms - len([r for r in overlapping if r.is_active])
        else:
            available_rooms = min(
                (by_date[n].allotment if n in by_date else room_type.physical_rooms) - booked_on(overlapping, n)
                for n in stay_nights
            )
        available_rooms = max(0, available_rooms)

        if available_rooms >= rooms:
            return Availability(available=True, available_rooms=available_rooms)
        if allow_overbooking:
            return Availability(available=True, available_rooms=available_rooms, reason=REASON_OVERBOOKED)
        return Availability(available=False, available_rooms=available_rooms, reason=REASON_NO_AVAILABILITY)

    @staticmethod
    def _restriction(
        by_date: Dict[date, InventoryDay], check_in: date, check_out: date, stay_nights: List[date]
    ) -> Optional[str]:
        for night in stay_nights:
            row = by_date.get(night)
            if row and row.stop_sell:
                return REASON_STOP_SELL

        arrival = by_date.get(check_in)
        if arrival and arrival.closed_to_arrival:
            return REASON_CLOSED_TO_ARRIVAL

        departure = by_date.get(check_out)
        if departure and departure.closed_to_departure:
            return REASON_CLOSED_TO_DEPARTURE

        if arrival:
            length = len(stay_nights)
            if arrival.min_stay and length < arrival.min_stay:
                return REASON_MIN_STAY
            if arrival.max_stay and length > arrival.max_stay:
                return REASON_MAX_STAY
        return None

    async def ensure_bookable(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        allow_overbooking: bool = False,
        exclude_reservation_id: Optional[str] = None,
        rooms: int = 1,
    ) -> Availability:
        """check_availability, raising CapacityError when the stay cannot be sold."""
        result = await self.check_availability(
            room_type_id, check_in, check_out, allow_overbooking, exclude_reservation_id, rooms
        )
        if not result.available:
            raise CapacityError(
                f"Room type {room_type_id} unavailable {check_in}..{check_out}: {result.reason}",
                available_rooms=result.available_rooms,
                reason=result.reason,
            )
        return result

    async def daily_status(self, room_type_id: str, start: date, end: date) -> List[DayStatus]:
        """Per-day allotment, bookings and restrictions for start..end inclusive."""
        if end < start:
            raise ValueError(f"end {end} is before start {start}")
        room_type = await self._room_type(room_type_id)
        rows = {row.date: row for row in await self._repo.get_inventory_days(room_type_id, start, end)}
        overlapping = await self._repo.get_overlapping_reservations(
            room_type_id, start, end + timedelta(days=1)
        )

        days = []
        for day in nights(start, end + timedelta(days=1)):
            row = rows.get(day)
            allotment = row.allotment if row else room_type.physical_rooms
            booked = booked_on(overlapping, day)
            days.append(DayStatus(
                date=day,
                allotment=allotment,
                booked=booked,
                available=max(0, allotment - booked),
                stop_sell=row.stop_sell if row else False,
                closed_to_arrival=row.closed_to_arrival if row else False,
                closed_to_departure=row.closed_to_departure if row else False,
            ))
        return days

    async def overbooked_days(self, room_type_id: str, start: date, end: date) -> List[DayStatus]:
        """Days where bookings exceed the allotment."""
        overbooked = [d for d in await self.daily_status(room_type_id, start, end) if d.overbooked_by > 0]
        if overbooked:
            logger.warning(
                f"Room type {room_type_id} overbooked on {len(overbooked)} day(s) between {start} and {end}"
            )
        return overbooked
