"""Pull worker: import provider bookings as internal reservations.

Per booking: skip if already mapped, resolve guest and room type, map the
status, check capacity, then write guest + reservation + mappings as one saga.
One bad booking never aborts the batch; it lands in `errors` instead.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from db.models.connection import Connection
from db.models.external_mapping import EntityType
from db.models.hotel import Guest
from db.models.provider_token import TokenType
from db.models.reservation import INACTIVE_STATUSES, Reservation, ReservationStatus
from lib.beds24.api_client import Beds24APIError, Beds24Client
from lib.beds24.models import Beds24Booking
from services.channel.config import ChannelConfig
from services.channel.connection_repo import ConnectionRepo, IConnectionRepo
from services.channel.errors import (
    CapacityError,
    ChannelSyncError,
    ConnectionNotFound,
    MappingNotFound,
    provider_error,
)
from services.channel.inventory import InventoryEngine, REASON_OVERBOOKED
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
from services.channel.saga import Saga
from services.channel.status import map_status
from services.channel.token_manager import TokenManager


@dataclass
class PullResult:
    trace_id: str
    hotel_id: Optional[str] = None
    window: Optional[Tuple[date, date]] = None
    data: List[Reservation] = field(default_factory=list)
    total_found: int = 0
    credits_used: int = 0
    credits_remaining: Optional[int] = None
    skipped: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    unknown_statuses: List[Dict[str, Any]] = field(default_factory=list)
    overbooked: List[str] = field(default_factory=list)
    room_type_fallbacks: List[str] = field(default_factory=list)

    @property
    def total_imported(self) -> int:
        return len(self.data)

    @property
    def status(self) -> str:
        return STATUS_PARTIAL if self.errors else STATUS_SUCCESS

    def counts(self) -> Dict[str, Any]:
        return {
            "total_found": self.total_found,
            "total_imported": self.total_imported,
            "skipped": len(self.skipped),
            "unknown_statuses": len(self.unknown_statuses),
            "overbooked": len(self.overbooked),
            "room_type_fallbacks": len(self.room_type_fallbacks),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [r.model_dump(mode="json") for r in self.data],
            "total_found": self.total_found,
            "total_imported": self.total_imported,
            "credits_used": self.credits_used,
            "credits_remaining": self.credits_remaining,
            "skipped": self.skipped,
            "errors": self.errors,
            "unknown_statuses": self.unknown_statuses,
            "overbooked": self.overbooked,
            "room_type_fallbacks": self.room_type_fallbacks,
            "window": {"from": self.window[0].isoformat(), "to": self.window[1].isoformat()} if self.window else None,
            "trace_id": self.trace_id,
        }


class PullWorker:
    """Imports provider bookings for one connection at a time."""

    def __init__(
        self,
        config: ChannelConfig,
        token_manager: TokenManager,
        connection_repo: Optional[IConnectionRepo] = None,
        pms_repo: Optional[IPMSRepo] = None,
        mappings: Optional[MappingStore] = None,
        inventory: Optional[InventoryEngine] = None,
        sync_state: Optional[SyncStateStore] = None,
        ledger: Optional[AuditLedger] = None,
        client_factory: Optional[Callable[[], Beds24Client]] = None,
        today: Callable[[], date] = lambda: utcnow().date(),
    ):
        self.config = config
        self.provider = config.provider
        self.tokens = token_manager
        self._connections = connection_repo or ConnectionRepo()
        self._pms = pms_repo or PMSRepo()
        self._mappings = mappings or MappingStore()
        self._inventory = inventory or InventoryEngine(self._pms)
        self._sync_state = sync_state or SyncStateStore(provider=self.provider)
        self._ledger = ledger or AuditLedger(provider=self.provider, redact_keys=config.redact_keys)
        self._client_factory = client_factory or (lambda: Beds24Client(config.base_url, config.http_timeout))
        self._today = today

    async def pull_reservations(
        self,
        connection_id: str,
        date_range: Optional[Tuple[date, date]] = None,
        trace_id: Optional[str] = None,
    ) -> PullResult:
        """Import bookings modified inside date_range (default: since the cursor).

        Raises:
            ConnectionNotFound, AuthError, RefreshError, ProviderError
        """
        trace_id = trace_id or new_trace_id()
        result = PullResult(trace_id=trace_id)

        async with self._ledger.span(
            "pull_reservations", trace_id=trace_id, payload={"connection_id": connection_id}
        ) as span:
            connection = await self._connections.get_connection(connection_id)
            if connection is None or not connection.active:
                raise ConnectionNotFound(f"No active connection {connection_id}", trace_id=trace_id)
            result.hotel_id = span.hotel_id = connection.hotel_id

            if date_range:
                start, end = date_range
                if end < start:
                    raise ValueError(f"date range end {end} is before start {start}")
            else:
                start, end = await self._sync_state.default_pull_window(
                    connection.hotel_id, self._today(), self.config.pull_lookback_days
                )
            result.window = (start, end)

            try:
                token = await self.tokens.get_valid_token(TokenType.READ, connection, trace_id)
                async with self._client_factory() as client:
                    try:
                        resp = await client.get_bookings(token.value, connection.property_id, start, end)
                    except Beds24APIError as e:
                        raise provider_error(e, trace_id) from e
            except Exception as e:
                await self._sync_state.record_attempt(connection.hotel_id, STATUS_ERROR, error=str(e))
                raise

            result.credits_used = resp.credits.request_cost
            result.credits_remaining = resp.credits.remaining
            result.total_found = len(resp.data)
            logger.info(
                f"Pull {connection.hotel_id}: {result.total_found} booking(s) modified {start}..{end} [{trace_id}]"
            )

            for raw in resp.data:
                await self._import_booking(raw, connection, result)

            await self._connections.update_sync(connection.id, utcnow(), result.credits_remaining)
            # Only the default window advances the cursor; explicit ranges are backfills
            cursors = {"bookings": self._today()} if date_range is None else None
            await self._sync_state.record_attempt(
                connection.hotel_id,
                result.status,
                error=f"{len(result.errors)} booking(s) failed" if result.errors else None,
                cursors=cursors,
            )

            span.add_cost(result.credits_used, result.credits_remaining)
            span.counts = result.counts()
            span.errors = result.errors[:50]

        if resp.credits.should_backoff:
            logger.warning(
                f"{self.provider} credits low ({resp.credits.remaining} left, reset in {resp.credits.resets_in}s)"
            )
        logger.info(
            f"Pull {result.hotel_id} done: {result.total_imported}/{result.total_found} imported, "
            f"{len(result.skipped)} skipped, {len(result.errors)} failed [{trace_id}]"
        )
        return result

    async def _import_booking(self, raw: Dict[str, Any], connection: Connection, result: PullResult) -> None:
        booking_id = str(raw.get("id") or raw.get("bookId") or "?") if isinstance(raw, dict) else "?"
        try:
            booking = Beds24Booking.model_validate(raw)
            booking_id = booking.external_id

            if await self._mappings.find_by_external_id(self.provider, EntityType.BOOKING, booking_id):
                result.skipped.append({"booking_id": booking_id, "reason": "already_imported"})
                return

            existing = await self._pms.find_reservation_by_external_booking(booking_id)
            if existing:
                # Imported before but the mapping write was lost
                await self._mappings.upsert(
                    self.provider, EntityType.BOOKING, booking_id, existing.id, {"repaired": True}
                )
                logger.warning(f"Booking {booking_id} existed without mapping; mapping repaired")
                result.skipped.append({"booking_id": booking_id, "reason": "mapping_repaired"})
                return

            room_type_id = await self._resolve_room_type(booking, connection, result)

            status = map_status(booking.status)
            if status.is_unknown:
                logger.warning(f"Booking {booking_id}: unknown status {booking.status!r}, importing as confirmed")
                result.unknown_statuses.append({"booking_id": booking_id, "status": booking.status})

            if status.internal not in INACTIVE_STATUSES:
                availability = await self._inventory.check_availability(
                    room_type_id,
                    booking.arrival,
                    booking.departure,
                    allow_overbooking=self.config.pull_allow_overbooking,
                )
                if not availability.available:
                    raise CapacityError(
                        f"No capacity for booking {booking_id} ({booking.arrival}..{booking.departure})",
                        available_rooms=availability.available_rooms,
                        reason=availability.reason,
                    )
                if availability.reason == REASON_OVERBOOKED:
                    logger.warning(f"Booking {booking_id} overbooks room type {room_type_id}")
                    result.overbooked.append(booking_id)

            reservation = await self._write_booking(booking, connection, room_type_id, status.internal)
            result.data.append(reservation)
        except ValidationError as e:
            logger.error(f"Booking {booking_id}: invalid payload: {e.error_count()} error(s)")
            result.errors.append({"booking_id": booking_id, "error": "invalid_payload", "message": str(e)})
        except ChannelSyncError as e:
            logger.warning(f"Booking {booking_id} skipped: {e.message}")
            result.errors.append({"booking_id": booking_id, **e.to_dict()})
        except Exception as e:
            logger.error(f"Booking {booking_id} failed: {e}")
            result.errors.append({"booking_id": booking_id, "error": "import_failed", "message": str(e)})

    async def _resolve_room_type(self, booking: Beds24Booking, connection: Connection, result: PullResult) -> str:
        if booking.room_id:
            mapping = await self._mappings.find_by_external_id(self.provider, EntityType.ROOM_TYPE, booking.room_id)
            if mapping:
                return mapping.internal_id

        if not self.config.room_type_fallback:
            raise MappingNotFound(self.provider, EntityType.ROOM_TYPE.value, booking.room_id or "(none)")

        # TODO: replace with an explicit per-connection default room type once bootstrap always maps rooms
        fallback = await self._pms.get_first_room_type(connection.hotel_id)
        if fallback is None:
            raise MappingNotFound(self.provider, EntityType.ROOM_TYPE.value, booking.room_id or "(none)")
        logger.warning(
            f"Booking {booking.external_id}: room {booking.room_id} unmapped, "
            f"falling back to first room type {fallback.id}"
        )
        result.room_type_fallbacks.append(booking.external_id)
        return fallback.id

    async def _write_booking(
        self, booking: Beds24Booking, connection: Connection, room_type_id: str, status: ReservationStatus
    ) -> Reservation:
        """Guest, reservation and mappings as one unit; undone if any step fails."""
        hotel_id = connection.hotel_id
        async with Saga(f"import booking {booking.external_id}") as saga:
            guest_mapping = await self._mappings.find_by_external_id(
                self.provider, EntityType.GUEST, booking.guest_external_id
            )
            if guest_mapping:
                guest_id = guest_mapping.internal_id
            else:
                guest = await self._pms.insert_guest(Guest(
                    hotel_id=hotel_id,
                    first_name=booking.first_name,
                    last_name=booking.last_name,
                    email=booking.email,
                    phone=booking.phone,
                    country=booking.country,
                ))
                guest_id = guest.id
                saga.on_rollback(f"delete guest {guest_id}", self._pms.delete_guest, guest_id)

            reservation = await self._pms.insert_reservation(Reservation(
                hotel_id=hotel_id,
                room_type_id=room_type_id,
                guest_id=guest_id,
                check_in=booking.arrival,
                check_out=booking.departure,
                status=status,
                adults=booking.num_adult,
                children=booking.num_child,
                total_amount=booking.price,
                currency=booking.currency or "EUR",
                channel=booking.channel or self.provider,
                special_requests=booking.comments,
                external_booking_id=booking.external_id,
            ))
            saga.on_rollback(
                f"delete reservation {reservation.id}", self._pms.delete_reservation, reservation.id
            )

            await self._mappings.upsert(
                self.provider,
                EntityType.BOOKING,
                booking.external_id,
                reservation.id,
                {"property_id": connection.property_id, "room_id": booking.room_id},
            )
            saga.on_rollback(
                f"delete booking mapping {booking.external_id}",
                self._mappings.delete, self.provider, EntityType.BOOKING, booking.external_id,
            )

            if not guest_mapping:
                await self._mappings.upsert_bidirectional(
                    self.provider, EntityType.GUEST, booking.guest_external_id, guest_id,
                    {"booking_id": booking.external_id},
                )
        return reservation

    async def run_scheduled(self, hotel_id: str, trace_id: Optional[str] = None) -> Optional[PullResult]:
        """Scheduled pull for one hotel. None (no provider call) when sync is off."""
        if not await self._sync_state.is_enabled(hotel_id):
            logger.info(f"Sync disabled or not bootstrapped for hotel {hotel_id}, skipping")
            return None
        connection = await self._connections.get_active_connection(hotel_id, self.provider)
        if connection is None:
            raise ConnectionNotFound(f"No active {self.provider} connection for hotel {hotel_id}", trace_id=trace_id)
        return await self.pull_reservations(connection.id, trace_id=trace_id)

    async def run_all_scheduled(self) -> Dict[str, Any]:
        """Pull every enabled hotel. One hotel failing does not stop the rest."""
        outcomes: Dict[str, Any] = {}
        for state in await self._sync_state.list_enabled():
            try:
                outcomes[state.hotel_id] = await self.run_scheduled(state.hotel_id)
            except ChannelSyncError as e:
                logger.error(f"Scheduled pull failed for hotel {state.hotel_id}: {e.message}")
                outcomes[state.hotel_id] = e
        return outcomes
