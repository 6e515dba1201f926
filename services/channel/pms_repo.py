"""Internal PMS records the engine reads and writes.

Hotels, room types, guests, reservations and the per-night inventory and rate
calendars. The engine never owns these tables; it only touches the rows it
imports or mirrors.
"""

import uuid
from datetime import date
from typing import Dict, List, Optional, Protocol, runtime_checkable, Tuple

from db.client import queries, get_conn
from db.models.hotel import Hotel, RoomType, Guest
from db.models.inventory_day import InventoryDay, DailyRate
from db.models.reservation import Reservation, ReservationStatus, INACTIVE_STATUSES

INACTIVE_STATUS_VALUES = sorted(s.value for s in INACTIVE_STATUSES)


@runtime_checkable
class IPMSRepo(Protocol):
    """Protocol for PMS persistence."""

    async def get_hotel(self, hotel_id: str) -> Optional[Hotel]: ...

    async def upsert_hotel(self, hotel: Hotel) -> Tuple[Hotel, bool]: ...

    async def get_room_type(self, room_type_id: str) -> Optional[RoomType]: ...

    async def get_first_room_type(self, hotel_id: str) -> Optional[RoomType]: ...

    async def insert_room_type(self, room_type: RoomType) -> RoomType: ...

    async def update_room_type(self, room_type: RoomType) -> RoomType: ...

    async def insert_guest(self, guest: Guest) -> Guest: ...

    async def delete_guest(self, guest_id: str) -> None: ...

    async def insert_reservation(self, reservation: Reservation) -> Reservation: ...

    async def delete_reservation(self, reservation_id: str) -> None: ...

    async def find_reservation_by_external_booking(self, external_booking_id: str) -> Optional[Reservation]: ...

    async def get_overlapping_reservations(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        """Active reservations with check_in < check_out' and check_out > check_in'."""
        ...

    async def get_inventory_days(self, room_type_id: str, start: date, end: date) -> List[InventoryDay]:
        """Rows for start..end inclusive."""
        ...

    async def upsert_inventory_day(self, hotel_id: str, day: InventoryDay) -> bool: ...

    async def patch_inventory_day(
        self,
        hotel_id: str,
        room_type_id: str,
        day: date,
        allotment: Optional[int] = None,
        stop_sell: Optional[bool] = None,
        closed_to_arrival: Optional[bool] = None,
        closed_to_departure: Optional[bool] = None,
        min_stay: Optional[int] = None,
        max_stay: Optional[int] = None,
    ) -> None: ...

    async def upsert_daily_rate(self, hotel_id: str, rate: DailyRate) -> bool: ...


class PMSRepo(IPMSRepo):
    """Postgres implementation."""

    async def get_hotel(self, hotel_id: str) -> Optional[Hotel]:
        async with get_conn() as conn:
            row = await queries.get_hotel(conn, hotel_id=hotel_id)
            return Hotel.model_validate(dict(row)) if row else None

    async def upsert_hotel(self, hotel: Hotel) -> Tuple[Hotel, bool]:
        async with get_conn() as conn:
            row = await queries.upsert_hotel(
                conn,
                hotel_id=hotel.id,
                name=hotel.name,
                code=hotel.code,
                address=hotel.address,
                city=hotel.city,
                country=hotel.country,
                phone=hotel.phone,
                email=hotel.email,
                timezone=hotel.timezone,
            )
            data = dict(row)
            inserted = data.pop("inserted")
            return Hotel.model_validate(data), inserted

    async def get_room_type(self, room_type_id: str) -> Optional[RoomType]:
        async with get_conn() as conn:
            row = await queries.get_room_type(conn, room_type_id=room_type_id)
            return RoomType.model_validate(dict(row)) if row else None

    async def get_first_room_type(self, hotel_id: str) -> Optional[RoomType]:
        async with get_conn() as conn:
            row = await queries.get_first_room_type(conn, hotel_id=hotel_id)
            return RoomType.model_validate(dict(row)) if row else None

    async def insert_room_type(self, room_type: RoomType) -> RoomType:
        async with get_conn() as conn:
            row = await queries.insert_room_type(
                conn,
                hotel_id=room_type.hotel_id,
                name=room_type.name,
                capacity=room_type.capacity,
                physical_rooms=room_type.physical_rooms,
                base_price=room_type.base_price,
                description=room_type.description,
            )
            return RoomType.model_validate(dict(row))

    async def update_room_type(self, room_type: RoomType) -> RoomType:
        async with get_conn() as conn:
            row = await queries.update_room_type(
                conn,
                room_type_id=room_type.id,
                name=room_type.name,
                capacity=room_type.capacity,
                physical_rooms=room_type.physical_rooms,
                base_price=room_type.base_price,
                description=room_type.description,
            )
            return RoomType.model_validate(dict(row))

    async def insert_guest(self, guest: Guest) -> Guest:
        async with get_conn() as conn:
            row = await queries.insert_guest(
                conn,
                hotel_id=guest.hotel_id,
                first_name=guest.first_name,
                last_name=guest.last_name,
                email=guest.email,
                phone=guest.phone,
                country=guest.country,
            )
            return Guest.model_validate(dict(row))

    async def delete_guest(self, guest_id: str) -> None:
        async with get_conn() as conn:
            await queries.delete_guest(conn, guest_id=guest_id)

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        async with get_conn() as conn:
            row = await queries.insert_reservation(
                conn,
                hotel_id=reservation.hotel_id,
                room_type_id=reservation.room_type_id,
                guest_id=reservation.guest_id,
                check_in=reservation.check_in,
                check_out=reservation.check_out,
                status=reservation.status.value,
                adults=reservation.adults,
                children=reservation.children,
                total_amount=reservation.total_amount,
                currency=reservation.currency,
                channel=reservation.channel,
                special_requests=reservation.special_requests,
                external_booking_id=reservation.external_booking_id,
            )
            return Reservation.model_validate(dict(row))

    async def delete_reservation(self, reservation_id: str) -> None:
        async with get_conn() as conn:
            await queries.delete_reservation(conn, reservation_id=reservation_id)

    async def find_reservation_by_external_booking(self, external_booking_id: str) -> Optional[Reservation]:
        async with get_conn() as conn:
            row = await queries.find_reservation_by_external_booking(
                conn, external_booking_id=external_booking_id
            )
            return Reservation.model_validate(dict(row)) if row else None

    async def get_overlapping_reservations(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        async with get_conn() as conn:
            rows = await queries.get_overlapping_reservations(
                conn,
                room_type_id=room_type_id,
                check_in=check_in,
                check_out=check_out,
                inactive_statuses=INACTIVE_STATUS_VALUES,
                exclude_id=exclude_reservation_id,
            )
            return [Reservation.model_validate(dict(r)) for r in rows]

    async def get_inventory_days(self, room_type_id: str, start: date, end: date) -> List[InventoryDay]:
        async with get_conn() as conn:
            rows = await queries.get_inventory_days(
                conn, room_type_id=room_type_id, start_date=start, end_date=end
            )
            return [InventoryDay.model_validate(dict(r)) for r in rows]

    async def upsert_inventory_day(self, hotel_id: str, day: InventoryDay) -> bool:
        async with get_conn() as conn:
            row = await queries.upsert_inventory_day(
                conn,
                room_type_id=day.room_type_id,
                date=day.date,
                hotel_id=hotel_id,
                allotment=day.allotment,
                stop_sell=day.stop_sell,
                closed_to_arrival=day.closed_to_arrival,
                closed_to_departure=day.closed_to_departure,
                min_stay=day.min_stay,
                max_stay=day.max_stay,
            )
            return bool(row["inserted"])

    async def patch_inventory_day(
        self,
        hotel_id: str,
        room_type_id: str,
        day: date,
        allotment: Optional[int] = None,
        stop_sell: Optional[bool] = None,
        closed_to_arrival: Optional[bool] = None,
        closed_to_departure: Optional[bool] = None,
        min_stay: Optional[int] = None,
        max_stay: Optional[int] = None,
    ) -> None:
        async with get_conn() as conn:
            await queries.patch_inventory_day(
                conn,
                room_type_id=room_type_id,
                date=day,
                hotel_id=hotel_id,
                allotment=allotment,
                stop_sell=stop_sell,
                closed_to_arrival=closed_to_arrival,
                closed_to_departure=closed_to_departure,
                min_stay=min_stay,
                max_stay=max_stay,
            )

    async def upsert_daily_rate(self, hotel_id: str, rate: DailyRate) -> bool:
        async with get_conn() as conn:
            row = await queries.upsert_daily_rate(
                conn, room_type_id=rate.room_type_id, date=rate.date, hotel_id=hotel_id, rate=rate.rate
            )
            return bool(row["inserted"])


class MockPMSRepo(IPMSRepo):
    """In-memory PMS for unit tests.

    fail_on names methods that should raise, reads included, e.g. {"insert_reservation"}.
    Compensating deletes never fail.
    """

    def __init__(self, fail_on: Optional[set] = None):
        self.hotels: Dict[str, Hotel] = {}
        self.room_types: Dict[str, RoomType] = {}
        self.guests: Dict[str, Guest] = {}
        self.reservations: Dict[str, Reservation] = {}
        self.inventory: Dict[Tuple[str, date], InventoryDay] = {}
        self.rates: Dict[Tuple[str, date], DailyRate] = {}
        self.fail_on = set(fail_on or [])

    def _check(self, method: str) -> None:
        if method in self.fail_on:
            raise ConnectionError(f"{method} failed")

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # Test helpers

    def add_hotel(self, hotel_id: str, name: str = "Hotel") -> Hotel:
        hotel = Hotel(id=hotel_id, name=name)
        self.hotels[hotel_id] = hotel
        return hotel

    def add_room_type(self, hotel_id: str, name: str = "Double", physical_rooms: int = 0,
                      room_type_id: Optional[str] = None) -> RoomType:
        rt = RoomType(id=room_type_id or self._new_id(), hotel_id=hotel_id, name=name, physical_rooms=physical_rooms)
        self.room_types[rt.id] = rt
        return rt

    def add_reservation(self, room_type_id: str, check_in: date, check_out: date,
                        status: ReservationStatus = ReservationStatus.CONFIRMED,
                        external_booking_id: Optional[str] = None) -> Reservation:
        rt = self.room_types[room_type_id]
        res = Reservation(
            id=self._new_id(),
            hotel_id=rt.hotel_id,
            room_type_id=room_type_id,
            check_in=check_in,
            check_out=check_out,
            status=status,
            external_booking_id=external_booking_id,
        )
        self.reservations[res.id] = res
        return res

    def set_inventory(self, room_type_id: str, day: date, allotment: int, **restrictions) -> InventoryDay:
        inv = InventoryDay(room_type_id=room_type_id, date=day, allotment=allotment, **restrictions)
        self.inventory[(room_type_id, day)] = inv
        return inv

    # IPMSRepo

    async def get_hotel(self, hotel_id: str) -> Optional[Hotel]:
        self._check("get_hotel")
        return self.hotels.get(hotel_id)

    async def upsert_hotel(self, hotel: Hotel) -> Tuple[Hotel, bool]:
        self._check("upsert_hotel")
        created = hotel.id not in self.hotels
        self.hotels[hotel.id] = hotel
        return hotel, created

    async def get_room_type(self, room_type_id: str) -> Optional[RoomType]:
        self._check("get_room_type")
        return self.room_types.get(room_type_id)

    async def get_first_room_type(self, hotel_id: str) -> Optional[RoomType]:
        self._check("get_first_room_type")
        for rt in self.room_types.values():
            if rt.hotel_id == hotel_id:
                return rt
        return None

    async def insert_room_type(self, room_type: RoomType) -> RoomType:
        self._check("insert_room_type")
        stored = room_type.model_copy(update={"id": self._new_id()})
        self.room_types[stored.id] = stored
        return stored

    async def update_room_type(self, room_type: RoomType) -> RoomType:
        self._check("update_room_type")
        self.room_types[room_type.id] = room_type
        return room_type

    async def insert_guest(self, guest: Guest) -> Guest:
        self._check("insert_guest")
        stored = guest.model_copy(update={"id": self._new_id()})
        self.guests[stored.id] = stored
        return stored

    async def delete_guest(self, guest_id: str) -> None:
        self.guests.pop(guest_id, None)

    async def insert_reservation(self, reservation: Reservation) -> Reservation:
        self._check("insert_reservation")
        if reservation.external_booking_id and any(
            r.external_booking_id == reservation.external_booking_id for r in self.reservations.values()
        ):
            raise ValueError(f"duplicate external_booking_id {reservation.external_booking_id}")
        stored = reservation.model_copy(update={"id": self._new_id()})
        self.reservations[stored.id] = stored
        return stored

    async def delete_reservation(self, reservation_id: str) -> None:
        self.reservations.pop(reservation_id, None)

    async def find_reservation_by_external_booking(self, external_booking_id: str) -> Optional[Reservation]:
        self._check("find_reservation_by_external_booking")
        for r in self.reservations.values():
            if r.external_booking_id == external_booking_id:
                return r
        return None

    async def get_overlapping_reservations(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        exclude_reservation_id: Optional[str] = None,
    ) -> List[Reservation]:
        self._check("get_overlapping_reservations")
        return [
            r for r in self.reservations.values()
            if r.room_type_id == room_type_id
            and r.check_in < check_out
            and r.check_out > check_in
            and r.is_active
            and r.id != exclude_reservation_id
        ]

    async def get_inventory_days(self, room_type_id: str, start: date, end: date) -> List[InventoryDay]:
        self._check("get_inventory_days")
        return sorted(
            (d for (rt, day), d in self.inventory.items() if rt == room_type_id and start <= day <= end),
            key=lambda d: d.date,
        )

    async def upsert_inventory_day(self, hotel_id: str, day: InventoryDay) -> bool:
        self._check("upsert_inventory_day")
        key = (day.room_type_id, day.date)
        created = key not in self.inventory
        self.inventory[key] = day
        return created

    async def patch_inventory_day(
        self,
        hotel_id: str,
        room_type_id: str,
        day: date,
        allotment: Optional[int] = None,
        stop_sell: Optional[bool] = None,
        closed_to_arrival: Optional[bool] = None,
        closed_to_departure: Optional[bool] = None,
        min_stay: Optional[int] = None,
        max_stay: Optional[int] = None,
    ) -> None:
        self._check("patch_inventory_day")
        key = (room_type_id, day)
        current = self.inventory.get(key) or InventoryDay(room_type_id=room_type_id, date=day)
        changes = {
            "allotment": allotment,
            "stop_sell": stop_sell,
            "closed_to_arrival": closed_to_arrival,
            "closed_to_departure": closed_to_departure,
            "min_stay": min_stay,
            "max_stay": max_stay,
        }
        self.inventory[key] = current.model_copy(update={k: v for k, v in changes.items() if v is not None})

    async def upsert_daily_rate(self, hotel_id: str, rate: DailyRate) -> bool:
        self._check("upsert_daily_rate")
        key = (rate.room_type_id, rate.date)
        created = key not in self.rates
        self.rates[key] = rate
        return created
