"""Beds24 API v2 payload models.

Payloads are parsed leniently: unknown keys are ignored and the older v1 key
names (propId, roomId, maxPax, bookId...) are accepted alongside v2 names.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, List, Iterator, Annotated

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, BeforeValidator, field_validator


def _to_str_id(v):
    if v is None:
        return None
    return str(v)


# Provider ids arrive as ints or strings
ExternalId = Annotated[str, BeforeValidator(_to_str_id)]


class Beds24Room(BaseModel):
    """Room type as returned with a property (includeAllRooms=true)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: ExternalId = Field(validation_alias=AliasChoices("id", "roomId"))
    name: str = Field(default="Room", validation_alias=AliasChoices("name", "roomName"))
    max_people: int = Field(default=2, validation_alias=AliasChoices("maxPeople", "maxPax"))
    qty: int = Field(default=0, validation_alias=AliasChoices("qty", "quantity"))
    min_price: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("minPrice", "basePrice"))
    description: Optional[str] = None

    @field_validator("max_people", "qty", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return v or 0


class Beds24Property(BaseModel):
    """Property (hotel) record."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: ExternalId = Field(validation_alias=AliasChoices("id", "propId"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "propName"))
    prop_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("propKey", "code"))
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: Optional[str] = Field(default=None, validation_alias=AliasChoices("timeZone", "timezone"))
    room_types: List[Beds24Room] = Field(
        default_factory=list, validation_alias=AliasChoices("roomTypes", "rooms")
    )

    @field_validator("room_types", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or []


class Beds24CalendarRange(BaseModel):
    """One calendar entry; covers every night from from_date to to_date inclusive."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    from_date: date = Field(validation_alias=AliasChoices("from", "date"))
    to_date: Optional[date] = Field(default=None, validation_alias=AliasChoices("to",))
    num_avail: Optional[int] = Field(default=None, validation_alias=AliasChoices("numAvail",))
    price1: Optional[Decimal] = Field(default=None, validation_alias=AliasChoices("price1", "price"))
    min_stay: Optional[int] = Field(default=None, validation_alias=AliasChoices("minStay",))
    max_stay: Optional[int] = Field(default=None, validation_alias=AliasChoices("maxStay",))
    closed_arrival: bool = Field(default=False, validation_alias=AliasChoices("closedArrival",))
    closed_departure: bool = Field(default=False, validation_alias=AliasChoices("closedDeparture",))
    stop_sell: bool = Field(default=False, validation_alias=AliasChoices("stopSell",))

    @field_validator("closed_arrival", "closed_departure", "stop_sell", mode="before")
    @classmethod
    def none_to_false(cls, v):
        if isinstance(v, str):
            return v.strip().lower() in ("true", "1", "yes")
        return bool(v)

    def days(self) -> Iterator[date]:
        end = self.to_date or self.from_date
        current = self.from_date
        while current <= end:
            yield current
            current += timedelta(days=1)


class Beds24RoomCalendar(BaseModel):
    """Calendar for one provider room."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    room_id: ExternalId = Field(validation_alias=AliasChoices("roomId", "id"))
    calendar: List[Beds24CalendarRange] = Field(default_factory=list)


class Beds24Booking(BaseModel):
    """Booking as returned by GET /bookings (flat guest fields)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: ExternalId = Field(validation_alias=AliasChoices("id", "bookId", "bookingId"))
    property_id: Optional[ExternalId] = Field(default=None, validation_alias=AliasChoices("propertyId", "propId"))
    room_id: Optional[ExternalId] = Field(default=None, validation_alias=AliasChoices("roomId",))
    status: Optional[str] = None
    arrival: date
    departure: date
    num_adult: int = Field(default=1, validation_alias=AliasChoices("numAdult",))
    num_child: int = Field(default=0, validation_alias=AliasChoices("numChild",))
    guest_id: Optional[ExternalId] = Field(default=None, validation_alias=AliasChoices("guestId",))
    first_name: str = Field(default="", validation_alias=AliasChoices("firstName",))
    last_name: str = Field(default="", validation_alias=AliasChoices("lastName",))
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, validation_alias=AliasChoices("phone", "mobile"))
    country: Optional[str] = None
    price: Decimal = Decimal("0")
    currency: Optional[str] = None
    channel: Optional[str] = Field(default=None, validation_alias=AliasChoices("channel", "referer"))
    comments: Optional[str] = Field(default=None, validation_alias=AliasChoices("comments", "notes"))

    @field_validator("num_adult", mode="before")
    @classmethod
    def default_one_adult(cls, v):
        return v or 1

    @field_validator("num_child", mode="before")
    @classmethod
    def default_no_children(cls, v):
        return v or 0

    @field_validator("price", mode="before")
    @classmethod
    def price_none_to_zero(cls, v):
        return v if v not in (None, "") else 0

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def name_none_to_empty(cls, v):
        return v or ""

    @property
    def guest_external_id(self) -> str:
        """Provider guest id, or a synthetic one scoped to the booking."""
        return self.guest_id or f"booking_{self.external_id}_guest"

    @property
    def has_guest(self) -> bool:
        return bool(self.email or self.first_name or self.last_name)


class Beds24TokenResponse(BaseModel):
    """Response of GET /authentication/token."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    token: str
    expires_in: Optional[int] = Field(default=None, validation_alias=AliasChoices("expiresIn",))
    scopes: List[str] = Field(default_factory=list)
    properties: List[str] = Field(default_factory=list)

    @field_validator("scopes", "properties", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [str(x) for x in v] if v else []
