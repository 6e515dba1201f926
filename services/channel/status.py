"""Provider booking status vocabulary.

Every provider status is an explicit member, including UNKNOWN for values we
have never seen. UNKNOWN is imported as confirmed (it holds a room, which is
the safe side for inventory) and reported so the value can be added here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from db.models.reservation import ReservationStatus


class ProviderStatus(str, Enum):
    NEW = "new"
    CONFIRMED = "confirmed"
    REQUEST = "request"
    INQUIRY = "inquiry"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ProviderStatus":
        if raw is None:
            return cls.UNKNOWN
        key = str(raw).strip().lower().replace("_", "-").replace(" ", "-")
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.UNKNOWN


_ALIASES = {
    "canceled": "cancelled",
    "noshow": "no-show",
    "checkedin": "checked-in",
    "arrived": "checked-in",
    "checkedout": "checked-out",
    "departed": "checked-out",
    "enquiry": "inquiry",
}

_TO_INTERNAL = {
    ProviderStatus.NEW: ReservationStatus.CONFIRMED,
    ProviderStatus.CONFIRMED: ReservationStatus.CONFIRMED,
    ProviderStatus.REQUEST: ReservationStatus.PENDING,
    ProviderStatus.INQUIRY: ReservationStatus.PENDING,
    ProviderStatus.CANCELLED: ReservationStatus.CANCELLED,
    ProviderStatus.NO_SHOW: ReservationStatus.NO_SHOW,
    ProviderStatus.CHECKED_IN: ReservationStatus.CHECKED_IN,
    ProviderStatus.CHECKED_OUT: ReservationStatus.CHECKED_OUT,
    ProviderStatus.UNKNOWN: ReservationStatus.CONFIRMED,
}

assert set(_TO_INTERNAL) == set(ProviderStatus), "every provider status needs an internal mapping"


@dataclass(frozen=True)
class MappedStatus:
    raw: Optional[str]
    provider: ProviderStatus
    internal: ReservationStatus

    @property
    def is_unknown(self) -> bool:
        return self.provider is ProviderStatus.UNKNOWN


def map_status(raw: Optional[str]) -> MappedStatus:
    provider = ProviderStatus.parse(raw)
    return MappedStatus(raw=raw, provider=provider, internal=_TO_INTERNAL[provider])
