from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict


class InventoryDay(BaseModel):
    """Per-night sellable inventory and restrictions for a room type."""

    room_type_id: str
    date: date
    allotment: int = 0
    stop_sell: bool = False
    closed_to_arrival: bool = False
    closed_to_departure: bool = False
    min_stay: Optional[int] = None
    max_stay: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class DailyRate(BaseModel):
    """Nightly rate for a room type."""

    room_type_id: str
    date: date
    rate: Decimal

    model_config = ConfigDict(from_attributes=True)
