"""Beds24 API v2 client library.

Provider-side models, HTTP client, credit headers and calendar line building.
"""

from lib.beds24.api_client import Beds24Client, Beds24APIError, Beds24Timeout, ProviderResponse
from lib.beds24.calendar import CalendarChanges, CalendarLine
from lib.beds24.credits import CreditInfo
from lib.beds24.models import (
    Beds24Booking,
    Beds24CalendarRange,
    Beds24Property,
    Beds24Room,
    Beds24RoomCalendar,
    Beds24TokenResponse,
)

__all__ = [
    "Beds24Client",
    "Beds24APIError",
    "Beds24Timeout",
    "ProviderResponse",
    "CalendarChanges",
    "CalendarLine",
    "CreditInfo",
    "Beds24Booking",
    "Beds24CalendarRange",
    "Beds24Property",
    "Beds24Room",
    "Beds24RoomCalendar",
    "Beds24TokenResponse",
]
