"""API routes for bootstrap, pull/push sync, availability and token diagnostics."""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, model_validator

from api.channel.auth import require_admin, require_sync_caller
from api.channel.deps import get_service
from lib.beds24.calendar import CalendarChanges
from services.channel.api_key_repo import Principal
from services.channel.ledger import STATUS_ERROR, STATUS_SUCCESS, new_trace_id
from services.channel.service import Service

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class DateRange(_Body):
    from_date: date = Field(alias="from")
    to_date: date = Field(alias="to")

    @model_validator(mode="after")
    def ordered(self):
        if self.to_date < self.from_date:
            raise ValueError("dateRange.to must not be before dateRange.from")
        return self


class PullBody(_Body):
    """Pull provider bookings for one connection.

    Example:
        {"connectionId": "c0ffee...", "dateRange": {"from": "2025-02-01", "to": "2025-03-01"}}
    """

    connection_id: str = Field(alias="connectionId")
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    sync_type: Literal["reservations", "bookings"] = Field(default="reservations", alias="syncType")
    sync_direction: Literal["pull"] = Field(default="pull", alias="syncDirection")


class PushBody(_Body):
    """Push rate/restriction changes for start..end inclusive.

    Example:
        {"hotelId": "...", "roomTypeId": "...", "start": "2025-04-01", "end": "2025-04-07",
         "changes": {"rate": 120, "minStay": 2}}
    """

    hotel_id: str = Field(alias="hotelId")
    room_type_id: str = Field(alias="roomTypeId")
    start: date
    end: date
    changes: CalendarChanges

    @model_validator(mode="after")
    def ordered(self):
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class BootstrapBody(_Body):
    hotel_id: str = Field(alias="hotelId")
    property_id: str = Field(alias="propertyId")


class AvailabilityBody(_Body):
    room_type_id: str = Field(alias="roomTypeId")
    check_in: date = Field(alias="checkIn")
    check_out: date = Field(alias="checkOut")
    rooms: int = Field(default=1, ge=1)
    exclude_reservation_id: Optional[str] = Field(default=None, alias="excludeReservationId")
    allow_overbooking: bool = Field(default=False, alias="allowOverbooking")

    @model_validator(mode="after")
    def ordered(self):
        if self.check_out <= self.check_in:
            raise ValueError("checkOut must be after checkIn")
        return self


def _trace_id(request: Request) -> str:
    """One trace id per request; error handlers read it back from request.state."""
    trace_id = request.headers.get("X-Trace-Id") or new_trace_id()
    request.state.trace_id = trace_id
    return trace_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/sync/pull")
async def sync_pull(
    body: PullBody,
    request: Request,
    principal: Principal = Depends(require_sync_caller),
    service: Service = Depends(get_service),
):
    date_range = (body.date_range.from_date, body.date_range.to_date) if body.date_range else None
    result = await service.pull(body.connection_id, date_range=date_range, trace_id=_trace_id(request))
    return {"success": True, **result.to_dict()}


@router.post("/sync/push")
async def sync_push(
    body: PushBody,
    request: Request,
    principal: Principal = Depends(require_sync_caller),
    service: Service = Depends(get_service),
):
    result = await service.push(
        body.hotel_id,
        body.room_type_id,
        body.start,
        body.end,
        body.changes,
        trace_id=_trace_id(request),
    )
    if result.status == STATUS_ERROR:
        # Every batch failed at the provider; pass its errors through
        return JSONResponse(
            status_code=502,
            content={**result.to_dict(), "success": False, "error": "provider_error"},
        )
    return result.to_dict()


@router.post("/bootstrap")
async def bootstrap(
    body: BootstrapBody,
    request: Request,
    principal: Principal = Depends(require_admin),
    service: Service = Depends(get_service),
):
    result = await service.bootstrap(body.hotel_id, body.property_id, trace_id=_trace_id(request))
    return {
        "success": result.status == STATUS_SUCCESS,
        "data": result.to_dict(),
        "trace_id": result.trace_id,
    }


@router.get("/tokens/diagnostics")
async def token_diagnostics(
    principal: Principal = Depends(require_admin),
    service: Service = Depends(get_service),
):
    return {"diagnostics": await service.token_diagnostics()}


@router.post("/availability")
async def availability(
    body: AvailabilityBody,
    principal: Principal = Depends(require_sync_caller),
    service: Service = Depends(get_service),
):
    result = await service.check_availability(
        body.room_type_id,
        body.check_in,
        body.check_out,
        rooms=body.rooms,
        exclude_reservation_id=body.exclude_reservation_id,
        allow_overbooking=body.allow_overbooking,
    )
    return result.to_dict()
