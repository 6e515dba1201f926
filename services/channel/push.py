"""Push worker: send local rate and restriction changes to the provider.

The range is expanded into one calendar line per day, identical neighbouring
days are merged, and the lines go out in batches with a short pause between
them. The local inventory and rate tables are updated only for batches the
provider accepted, so the local mirror never claims a change the provider
rejected.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger

from db.models.external_mapping import EntityType
from db.models.inventory_day import DailyRate
from db.models.provider_token import TokenType
from lib.beds24.api_client import Beds24APIError, Beds24Client
from lib.beds24.calendar import (
    CalendarChanges,
    CalendarLine,
    batched,
    build_calendar_lines,
    merge_contiguous_lines,
    to_payload,
)
from lib.beds24.credits import backoff_delay
from services.channel.config import ChannelConfig
from services.channel.connection_repo import ConnectionRepo, IConnectionRepo
from services.channel.errors import MappingNotFound, RoomTypeNotFound
from services.channel.ledger import (
    AuditLedger,
    STATUS_ERROR,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    new_trace_id,
)
from services.channel.mapping_store import MappingStore
from services.channel.pms_repo import IPMSRepo, PMSRepo
from services.channel.token_manager import TokenManager


@dataclass
class PushResult:
    trace_id: str
    hotel_id: str
    room_type_id: str
    room_id: Optional[str] = None
    total_lines: int = 0
    merged_lines: int = 0
    batches: int = 0
    successful_batches: int = 0
    days_mirrored: int = 0
    credits_used: int = 0
    credits_remaining: Optional[int] = None
    deferred_lines: int = 0
    retry_after: Optional[float] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def status(self) -> str:
        if self.batches and self.successful_batches == 0:
            return STATUS_ERROR
        if self.errors or self.deferred_lines:
            return STATUS_PARTIAL
        return STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "room_id": self.room_id,
            "success": self.success,
            "total_lines": self.total_lines,
            "merged_lines": self.merged_lines,
            "batches": self.batches,
            "successful_batches": self.successful_batches,
            "days_mirrored": self.days_mirrored,
            "credits_used": self.credits_used,
            "credits_remaining": self.credits_remaining,
            "deferred_lines": self.deferred_lines,
            "retry_after": self.retry_after,
            "errors": self.errors,
            "trace_id": self.trace_id,
        }


def _rejections(results: List[Any]) -> List[Any]:
    """Per-room entries the provider marked unsuccessful."""
    return [r for r in results if isinstance(r, dict) and r.get("success") is False]


class PushWorker:
    """Sends calendar changes for one room type and mirrors them locally."""

    def __init__(
        self,
        config: ChannelConfig,
        token_manager: TokenManager,
        connection_repo: Optional[IConnectionRepo] = None,
        pms_repo: Optional[IPMSRepo] = None,
        mappings: Optional[MappingStore] = None,
        ledger: Optional[AuditLedger] = None,
        client_factory: Optional[Callable[[], Beds24Client]] = None,
    ):
        self.config = config
        self.provider = config.provider
        self.tokens = token_manager
        self._connections = connection_repo or ConnectionRepo()
        self._pms = pms_repo or PMSRepo()
        self._mappings = mappings or MappingStore()
        self._ledger = ledger or AuditLedger(provider=self.provider, redact_keys=config.redact_keys)
        self._client_factory = client_factory or (lambda: Beds24Client(config.base_url, config.http_timeout))

    async def push_rates(
        self,
        hotel_id: str,
        room_type_id: str,
        start: date,
        end: date,
        changes: Union[CalendarChanges, Dict[str, Any]],
        trace_id: Optional[str] = None,
    ) -> PushResult:
        """Push changes for every day in start..end inclusive.

        Raises:
            ValueError: empty changes or end before start
            RoomTypeNotFound, MappingNotFound: nothing to push to
            AuthError, RefreshError: no usable write token
        """
        if not isinstance(changes, CalendarChanges):
            changes = CalendarChanges.model_validate(changes)
        trace_id = trace_id or new_trace_id()
        result = PushResult(trace_id=trace_id, hotel_id=hotel_id, room_type_id=room_type_id)

        async with self._ledger.span(
            "push_rates",
            hotel_id=hotel_id,
            trace_id=trace_id,
            payload={
                "room_type_id": room_type_id,
                "from": start.isoformat(),
                "to": end.isoformat(),
                "changes": changes.model_dump(mode="json", exclude_none=True),
            },
        ) as span:
            room_id = await self._resolve_room(hotel_id, room_type_id)
            result.room_id = room_id

            daily = build_calendar_lines(room_id, start, end, changes)
            lines = merge_contiguous_lines(daily)
            batches = batched(lines, self.config.push_batch_size)
            result.total_lines = len(daily)
            result.merged_lines = len(lines)
            result.batches = len(batches)

            connection = await self._connections.get_active_connection(hotel_id, self.provider)
            token = await self.tokens.get_valid_token(TokenType.WRITE, connection, trace_id)

            async with self._client_factory() as client:
                for index, batch in enumerate(batches):
                    if index:
                        await asyncio.sleep(self.config.push_batch_delay)
                    credits = await self._send_batch(client, token.value, index, batch, changes, result)

                    if credits is not None and credits.should_backoff and index + 1 < len(batches):
                        result.deferred_lines = sum(len(b) for b in batches[index + 1:])
                        result.retry_after = backoff_delay(credits.remaining, credits.resets_in)
                        logger.warning(
                            f"Push {room_type_id}: {credits.remaining} credits left, deferring "
                            f"{result.deferred_lines} line(s) for {result.retry_after:.0f}s [{trace_id}]"
                        )
                        break

            span.add_cost(result.credits_used, result.credits_remaining)
            span.counts = {
                "total_lines": result.total_lines,
                "merged_lines": result.merged_lines,
                "batches": result.batches,
                "successful_batches": result.successful_batches,
                "days_mirrored": result.days_mirrored,
                "deferred_lines": result.deferred_lines,
            }
            span.errors = result.errors[:50]
            span.status = result.status

        logger.info(
            f"Push {room_type_id} -> room {room_id}: {result.successful_batches}/{result.batches} "
            f"batch(es), {result.days_mirrored} day(s) mirrored [{trace_id}]"
        )
        return result

    async def _resolve_room(self, hotel_id: str, room_type_id: str) -> str:
        room_type = await self._pms.get_room_type(room_type_id)
        if room_type is None or room_type.hotel_id != hotel_id:
            raise RoomTypeNotFound(f"Room type {room_type_id} not found for hotel {hotel_id}")

        if await self._mappings.find_by_internal_id(self.provider, EntityType.HOTEL, hotel_id) is None:
            raise MappingNotFound(self.provider, EntityType.HOTEL.value, hotel_id)
        mapping = await self._mappings.find_by_internal_id(self.provider, EntityType.ROOM_TYPE, room_type_id)
        if mapping is None:
            raise MappingNotFound(self.provider, EntityType.ROOM_TYPE.value, room_type_id)
        return mapping.external_id

    async def _send_batch(
        self,
        client: Beds24Client,
        token: str,
        index: int,
        batch: List[CalendarLine],
        changes: CalendarChanges,
        result: PushResult,
    ):
        """Returns the batch's CreditInfo when the provider accepted it, else None."""
        try:
            resp = await client.post_rooms_calendar(token, to_payload(batch))
        except Beds24APIError as e:
            logger.error(f"Push batch {index + 1} failed: {e}")
            result.errors.append({"batch": index + 1, "error": str(e), "status_code": e.status_code})
            return None

        result.credits_used += resp.credits.request_cost
        if resp.credits.remaining is not None:
            result.credits_remaining = resp.credits.remaining

        rejected = _rejections(resp.data)
        if rejected:
            logger.error(f"Push batch {index + 1} rejected by provider: {rejected}")
            result.errors.append({"batch": index + 1, "error": "rejected", "details": rejected})
            return None

        result.successful_batches += 1
        await self._mirror(result, batch, changes)
        return resp.credits

    async def _mirror(self, result: PushResult, batch: List[CalendarLine], changes: CalendarChanges) -> None:
        restrictions = {
            "allotment": changes.availability,
            "stop_sell": changes.stop_sell,
            "closed_to_arrival": changes.closed_arrival,
            "closed_to_departure": changes.closed_departure,
            "min_stay": changes.min_stay,
            "max_stay": changes.max_stay,
        }
        has_restrictions = any(v is not None for v in restrictions.values())

        for line in batch:
            for day in line.days():
                try:
                    if has_restrictions:
                        await self._pms.patch_inventory_day(
                            result.hotel_id, result.room_type_id, day, **restrictions
                        )
                    if changes.rate is not None:
                        await self._pms.upsert_daily_rate(
                            result.hotel_id,
                            DailyRate(room_type_id=result.room_type_id, date=day, rate=changes.rate),
                        )
                    result.days_mirrored += 1
                except Exception as e:
                    # Provider already has the change; the next bootstrap re-syncs the mirror
                    logger.error(f"Mirror update failed for {result.room_type_id} on {day}: {e}")
                    result.errors.append({"date": day.isoformat(), "error": "mirror_failed", "message": str(e)})
