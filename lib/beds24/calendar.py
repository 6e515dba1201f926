"""Calendar lines for POST /inventory/rooms/calendar.

A push covers every day in an inclusive range. Each day becomes one line that
carries only the fields being changed; runs of identical consecutive days are
then merged into a single ranged line to save credits.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class CalendarChanges(BaseModel):
    """Fields to change on each pushed day. Unset fields are not sent."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    rate: Optional[Decimal] = Field(default=None, ge=0)
    availability: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("availability", "numAvail")
    )
    min_stay: Optional[int] = Field(default=None, ge=0, alias="minStay")
    max_stay: Optional[int] = Field(default=None, ge=0, alias="maxStay")
    stop_sell: Optional[bool] = Field(default=None, alias="stopSell")
    closed_arrival: Optional[bool] = Field(default=None, alias="closedArrival")
    closed_departure: Optional[bool] = Field(default=None, alias="closedDeparture")

    @model_validator(mode="after")
    def at_least_one_change(self):
        if self.is_empty:
            raise ValueError("at least one calendar field must be set")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    def provider_fields(self) -> Dict[str, Any]:
        """Provider field names for every set field."""
        fields: Dict[str, Any] = {}
        if self.rate is not None:
            fields["price1"] = float(self.rate)
        if self.availability is not None:
            fields["numAvail"] = self.availability
        if self.min_stay is not None:
            fields["minStay"] = self.min_stay
        if self.max_stay is not None:
            fields["maxStay"] = self.max_stay
        if self.stop_sell is not None:
            fields["stopSell"] = self.stop_sell
        if self.closed_arrival is not None:
            fields["closedArrival"] = self.closed_arrival
        if self.closed_departure is not None:
            fields["closedDeparture"] = self.closed_departure
        return fields


@dataclass
class CalendarLine:
    """One provider calendar line covering from_date..to_date inclusive."""

    room_id: str
    from_date: date
    to_date: date
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def nights(self) -> int:
        return (self.to_date - self.from_date).days + 1

    def days(self) -> Iterator[date]:
        current = self.from_date
        while current <= self.to_date:
            yield current
            current += timedelta(days=1)

    def to_payload(self) -> Dict[str, Any]:
        entry = {"from": self.from_date.isoformat(), "to": self.to_date.isoformat()}
        entry.update(self.fields)
        return entry


def build_calendar_lines(room_id: str, start: date, end: date, changes: CalendarChanges) -> List[CalendarLine]:
    """One line per day in [start, end]."""
    if end < start:
        raise ValueError(f"end {end} is before start {start}")
    fields = changes.provider_fields()
    lines = []
    current = start
    while current <= end:
        lines.append(CalendarLine(room_id=room_id, from_date=current, to_date=current, fields=dict(fields)))
        current += timedelta(days=1)
    return lines


def merge_contiguous_lines(lines: List[CalendarLine]) -> List[CalendarLine]:
    """Merge adjacent lines for the same room whose fields are identical."""
    merged: List[CalendarLine] = []
    for line in lines:
        previous = merged[-1] if merged else None
        if (
            previous is not None
            and previous.room_id == line.room_id
            and previous.fields == line.fields
            and previous.to_date + timedelta(days=1) == line.from_date
        ):
            previous.to_date = line.to_date
            continue
        merged.append(CalendarLine(line.room_id, line.from_date, line.to_date, dict(line.fields)))
    return merged


def batched(lines: List[CalendarLine], size: int) -> List[List[CalendarLine]]:
    if size <= 0:
        raise ValueError("batch size must be positive")
    return [lines[i:i + size] for i in range(0, len(lines), size)]


def to_payload(lines: List[CalendarLine]) -> List[Dict[str, Any]]:
    """Group lines by room into the v2 request body."""
    by_room: Dict[str, List[Dict[str, Any]]] = {}
    for line in lines:
        by_room.setdefault(line.room_id, []).append(line.to_payload())
    payload = []
    for room_id, calendar in by_room.items():
        payload.append({"roomId": int(room_id) if room_id.isdigit() else room_id, "calendar": calendar})
    return payload
