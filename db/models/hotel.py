from typing import Optional
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, field_validator


class Hotel(BaseModel):
    """Internal hotel record (system of record side)."""

    id: str
    name: str
    code: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    timezone: str = "UTC"

    @field_validator('timezone', mode='before')
    @classmethod
    def timezone_none_to_default(cls, v):
        """Handle NULL from provider payloads by defaulting to UTC."""
        return v if v else "UTC"

    model_config = ConfigDict(from_attributes=True)


class RoomType(BaseModel):
    """Internal room type. physical_rooms backs availability when no inventory rows exist."""

    id: Optional[str] = None  # None until inserted
    hotel_id: str
    name: str
    capacity: int = 2
    physical_rooms: int = 0
    base_price: Decimal = Decimal("0")
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Guest(BaseModel):
    """Internal guest record created for provider-originated bookings."""

    id: Optional[str] = None
    hotel_id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
