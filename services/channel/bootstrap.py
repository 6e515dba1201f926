"""Bootstrap import: pull a property's hotel, room types and calendar.

Three phases, each upsert-based so a re-run converges instead of duplicating:

1. hotel       - property record into the internal hotel row
2. room types  - only when phase 1 returned room data
3. calendar    - a fixed window from today; unmapped provider rooms are skipped

Item failures stay inside their phase. A calendar failure never undoes the
hotel or room type work. Call-level failures (no token, property fetch
failed) are audited with the trace id and raised.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from db.models.connection import Connection
from db.models.external_mapping import EntityType
from db.models.hotel import Hotel, RoomType
from db.models.inventory_day import DailyRate, InventoryDay
from db.models.provider_token import TokenType
from lib.beds24.api_client import Beds24APIError, Beds24Client
from lib.beds24.models import Beds24Property, Beds24RoomCalendar
from services.channel.config import ChannelConfig
from services.channel.errors import PartialImportError, provider_error
from services.channel.ledger import (
    AuditLedger,
    STATUS_ERROR,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    SyncStateStore,
    new_trace_id,
    utcnow,
)
from services.channel.mapping_store import MappingStore
from services.channel.pms_repo import IPMSRepo, PMSRepo
from services.channel.token_manager import TokenManager


@dataclass
class PhaseResult:
    created: int = 0
    updated: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return self.created + self.updated

    def count(self, created: bool) -> None:
        if created:
            self.created += 1
        else:
            self.updated += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
            "skipped": self.skipped,
        }


@dataclass
class BootstrapResult:
    hotel_id: str
    property_id: str
    trace_id: str
    hotel: PhaseResult = field(default_factory=PhaseResult)
    room_types: PhaseResult = field(default_factory=PhaseResult)
    calendar: PhaseResult = field(default_factory=PhaseResult)
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    credits_used: int = 0
    credits_remaining: Optional[int] = None

    @property
    def total_imported(self) -> int:
        return self.hotel.imported + self.room_types.imported + self.calendar.imported

    @property
    def errors(self) -> List[Dict[str, Any]]:
        out = []
        for phase, result in (("hotel", self.hotel), ("room_types", self.room_types), ("calendar", self.calendar)):
            out.extend({"phase": phase, **e} for e in result.errors)
        return out

    @property
    def status(self) -> str:
        return STATUS_PARTIAL if self.errors else STATUS_SUCCESS

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialImportError(self, trace_id=self.trace_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hotel": self.hotel.to_dict(),
            "roomTypes": self.room_types.to_dict(),
            "calendar": self.calendar.to_dict(),
            "totalImported": self.total_imported,
            "errors": self.errors,
            "window": {
                "from": self.window_start.isoformat() if self.window_start else None,
                "to": self.window_end.isoformat() if self.window_end else None,
            },
            "trace_id": self.trace_id,
        }


class Bootstrapper:
    """Runs the three-phase import for one hotel."""

    def __init__(
        self,
        config: ChannelConfig,
        token_manager: TokenManager,
        pms_repo: Optional[IPMSRepo] = None,
        mappings: Optional[MappingStore] = None,
        sync_state: Optional[SyncStateStore] = None,
        ledger: Optional[AuditLedger] = None,
        client_factory: Optional[Callable[[], Beds24Client]] = None,
        today: Callable[[], date] = lambda: utcnow().date(),
    ):
        self.config = config
        self.provider = config.provider
        self.tokens = token_manager
        self._pms = pms_repo or PMSRepo()
        self._mappings = mappings or MappingStore()
        self._sync_state = sync_state or SyncStateStore(provider=self.provider)
        self._ledger = ledger or AuditLedger(provider=self.provider, redact_keys=config.redact_keys)
        self._client_factory = client_factory or (lambda: Beds24Client(config.base_url, config.http_timeout))
        self._today = today

    async def bootstrap(
        self,
        hotel_id: str,
        property_id: str,
        trace_id: Optional[str] = None,
        connection: Optional[Connection] = None,
    ) -> BootstrapResult:
        trace_id = trace_id or new_trace_id()
        result = BootstrapResult(hotel_id=hotel_id, property_id=str(property_id), trace_id=trace_id)
        logger.info(f"Bootstrap hotel {hotel_id} from {self.provider} property {property_id} [{trace_id}]")

        async with self._ledger.span(
            "bootstrap", hotel_id=hotel_id, trace_id=trace_id, payload={"property_id": str(property_id)}
        ) as span:
            try:
                await self._sync_state.ensure(hotel_id, {"property_id": str(property_id)})
                token = await self.tokens.get_valid_token(TokenType.READ, connection, trace_id)

                async with self._client_factory() as client:
                    try:
                        prop_resp = await client.get_property(token.value, str(property_id))
                    except Beds24APIError as e:
                        raise provider_error(e, trace_id) from e
                    self._add_credits(result, prop_resp.credits)
                    prop: Beds24Property = prop_resp.data

                    await self._import_hotel(result, prop)
                    if prop.room_types:
                        await self._import_room_types(result, prop)
                    else:
                        logger.warning(f"Property {property_id} returned no room types; skipping room type phase")

                    await self._import_calendar(result, client, token.value)
            except Exception as e:
                await self._sync_state.record_attempt(hotel_id, STATUS_ERROR, error=str(e))
                raise

            await self._sync_state.mark_bootstrapped(
                hotel_id,
                cursors={"calendar_from": result.window_start, "calendar_to": result.window_end},
                status=result.status,
                error=f"{len(result.errors)} error(s)" if result.errors else None,
            )

            span.add_cost(result.credits_used, result.credits_remaining)
            span.counts = {
                "hotel": result.hotel.to_dict(),
                "room_types": result.room_types.to_dict(),
                "calendar": {**result.calendar.to_dict(), "errors": len(result.calendar.errors)},
                "total_imported": result.total_imported,
            }
            span.errors = result.errors[:50]

        logger.info(
            f"Bootstrap hotel {hotel_id} done: {result.total_imported} imported, "
            f"{len(result.errors)} error(s) [{trace_id}]"
        )
        return result

    @staticmethod
    def _add_credits(result: BootstrapResult, credits) -> None:
        result.credits_used += credits.request_cost
        if credits.remaining is not None:
            result.credits_remaining = credits.remaining

    async def _import_hotel(self, result: BootstrapResult, prop: Beds24Property) -> None:
        """Phase 1."""
        try:
            hotel = Hotel(
                id=result.hotel_id,
                name=prop.name or f"Property {prop.external_id}",
                code=prop.prop_key,
                address=prop.address,
                city=prop.city,
                country=prop.country,
                phone=prop.phone,
                email=prop.email,
                timezone=prop.timezone,
            )
            _, created = await self._pms.upsert_hotel(hotel)
            result.hotel.count(created)
            await self._mappings.upsert_bidirectional(
                self.provider, EntityType.HOTEL, prop.external_id, result.hotel_id, {"name": hotel.name}
            )
        except Exception as e:
            logger.error(f"Hotel phase failed for {result.hotel_id}: {e}")
            result.hotel.errors.append({"property_id": prop.external_id, "error": str(e)})

    async def _import_room_types(self, result: BootstrapResult, prop: Beds24Property) -> None:
        """Phase 2."""
        for room in prop.room_types:
            try:
                mapping = await self._mappings.find_by_external_id(self.provider, EntityType.ROOM_TYPE, room.external_id)
                existing = await self._pms.get_room_type(mapping.internal_id) if mapping else None

                room_type = RoomType(
                    id=existing.id if existing else None,
                    hotel_id=result.hotel_id,
                    name=room.name,
                    capacity=room.max_people or 2,
                    physical_rooms=room.qty,
                    base_price=room.min_price,
                    description=room.description,
                )
                if existing and existing.hotel_id == result.hotel_id:
                    stored = await self._pms.update_room_type(room_type)
                    result.room_types.count(created=False)
                else:
                    stored = await self._pms.insert_room_type(room_type)
                    result.room_types.count(created=True)

                await self._mappings.upsert_bidirectional(
                    self.provider,
                    EntityType.ROOM_TYPE,
                    room.external_id,
                    stored.id,
                    {"name": room.name, "property_id": prop.external_id},
                )
            except Exception as e:
                logger.error(f"Room type {room.external_id} failed: {e}")
                result.room_types.errors.append({"room_id": room.external_id, "error": str(e)})

    async def _import_calendar(self, result: BootstrapResult, client: Beds24Client, token: str) -> None:
        """Phase 3."""
        start = self._today()
        end = start + timedelta(days=self.config.calendar_days - 1)
        result.window_start, result.window_end = start, end

        try:
            resp = await client.get_rooms_calendar(token, result.property_id, start, end)
        except Beds24APIError as e:
            logger.error(f"Calendar fetch failed for property {result.property_id}: {e}")
            result.calendar.errors.append({"error": str(e), "status_code": e.status_code})
            return
        except ValueError as e:
            # Malformed calendar payload
            logger.error(f"Calendar payload invalid for property {result.property_id}: {e}")
            result.calendar.errors.append({"error": str(e)})
            return
        self._add_credits(result, resp.credits)

        for room_calendar in resp.data:
            await self._import_room_calendar(result, room_calendar, start, end)

    async def _import_room_calendar(
        self, result: BootstrapResult, room_calendar: Beds24RoomCalendar, start: date, end: date
    ) -> None:
        room_id = room_calendar.room_id
        try:
            mapping = await self._mappings.find_by_external_id(self.provider, EntityType.ROOM_TYPE, room_id)
            if mapping is None:
                logger.warning(f"Calendar room {room_id} has no room type mapping, skipping")
                result.calendar.skipped.append(room_id)
                return

            room_type = await self._pms.get_room_type(mapping.internal_id)
            physical_rooms = room_type.physical_rooms if room_type else 0
            days = [
                (entry, day)
                for entry in room_calendar.calendar
                for day in entry.days()
                if start <= day <= end
            ]
        except Exception as e:
            logger.error(f"Calendar for room {room_id} failed: {e}")
            result.calendar.errors.append({"room_id": room_id, "error": str(e)})
            return

        for entry, day in days:
            try:
                created = await self._pms.upsert_inventory_day(
                    result.hotel_id,
                    InventoryDay(
                        room_type_id=mapping.internal_id,
                        date=day,
                        allotment=entry.num_avail if entry.num_avail is not None else physical_rooms,
                        stop_sell=entry.stop_sell,
                        closed_to_arrival=entry.closed_arrival,
                        closed_to_departure=entry.closed_departure,
                        min_stay=entry.min_stay,
                        max_stay=entry.max_stay,
                    ),
                )
                if entry.price1 is not None:
                    await self._pms.upsert_daily_rate(
                        result.hotel_id,
                        DailyRate(room_type_id=mapping.internal_id, date=day, rate=entry.price1),
                    )
                result.calendar.count(created)
            except Exception as e:
                logger.error(f"Calendar day {day} for room {room_id} failed: {e}")
                result.calendar.errors.append({"room_id": room_id, "date": day.isoformat(), "error": str(e)})
