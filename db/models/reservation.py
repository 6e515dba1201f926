from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ReservationStatus(str, Enum):
    """Internal reservation status vocabulary."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Statuses that do not hold a room
INACTIVE_STATUSES = frozenset({ReservationStatus.CANCELLED, ReservationStatus.NO_SHOW})


class Reservation(BaseModel):
    """Internal reservation. check_out is exclusive (the departure morning)."""

    id: Optional[str] = None  # None until inserted
    hotel_id: str
    room_type_id: str
    guest_id: Optional[str] = None
    check_in: date
    check_out: date
    status: ReservationStatus = ReservationStatus.CONFIRMED
    adults: int = 1
    children: int = 0
    total_amount: Decimal = Decimal("0")
    currency: str = "EUR"
    channel: Optional[str] = None
    special_requests: Optional[str] = None
    external_booking_id: Optional[str] = None  # Set only for provider-originated bookings

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def occupies(self, night: date) -> bool:
        """True if the room is held on the given night."""
        return self.check_in <= night < self.check_out
