"""
Channel Sync Service - one entry point over the engine components.

Wires the token manager, mapping store, inventory engine, ledger and the
workers around shared repositories. The API and the workflows only talk to
this class.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from db.models.connection import Connection
from lib.beds24.api_client import Beds24Client
from lib.beds24.calendar import CalendarChanges
from services.channel.bootstrap import Bootstrapper, BootstrapResult
from services.channel.config import ChannelConfig
from services.channel.connection_repo import ConnectionRepo, IConnectionRepo, ISecretResolver
from services.channel.inventory import Availability, InventoryEngine
from services.channel.ledger import AuditLedger, SyncStateStore, utcnow
from services.channel.ledger_repo import IAuditRepo, ISyncStateRepo
from services.channel.mapping_repo import IMappingRepo
from services.channel.mapping_store import MappingStore
from services.channel.pms_repo import IPMSRepo, PMSRepo
from services.channel.pull import PullResult, PullWorker
from services.channel.push import PushResult, PushWorker
from services.channel.token_manager import TokenManager
from services.channel.token_repo import ITokenRepo


class Service:
    """Channel sync operations for one provider."""

    def __init__(
        self,
        config: Optional[ChannelConfig] = None,
        token_repo: Optional[ITokenRepo] = None,
        connection_repo: Optional[IConnectionRepo] = None,
        mapping_repo: Optional[IMappingRepo] = None,
        pms_repo: Optional[IPMSRepo] = None,
        audit_repo: Optional[IAuditRepo] = None,
        sync_state_repo: Optional[ISyncStateRepo] = None,
        secrets: Optional[ISecretResolver] = None,
        client_factory: Optional[Callable[[], Beds24Client]] = None,
        today: Optional[Callable[[], date]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or ChannelConfig.from_env()
        provider = self.config.provider

        self.connections = connection_repo or ConnectionRepo()
        self.pms = pms_repo or PMSRepo()
        self.ledger = AuditLedger(audit_repo, provider=provider, redact_keys=self.config.redact_keys)
        self.sync_state = SyncStateStore(sync_state_repo, provider=provider)
        self.mappings = MappingStore(mapping_repo)
        self.inventory = InventoryEngine(self.pms)
        self.tokens = TokenManager(
            self.config,
            token_repo=token_repo,
            connection_repo=self.connections,
            secrets=secrets,
            client_factory=client_factory,
            ledger=self.ledger,
            clock=clock,
        )

        day_kwargs = {"today": today} if today else {}
        self.bootstrapper = Bootstrapper(
            self.config,
            self.tokens,
            pms_repo=self.pms,
            mappings=self.mappings,
            sync_state=self.sync_state,
            ledger=self.ledger,
            client_factory=client_factory,
            **day_kwargs,
        )
        self.puller = PullWorker(
            self.config,
            self.tokens,
            connection_repo=self.connections,
            pms_repo=self.pms,
            mappings=self.mappings,
            inventory=self.inventory,
            sync_state=self.sync_state,
            ledger=self.ledger,
            client_factory=client_factory,
            **day_kwargs,
        )
        self.pusher = PushWorker(
            self.config,
            self.tokens,
            connection_repo=self.connections,
            pms_repo=self.pms,
            mappings=self.mappings,
            ledger=self.ledger,
            client_factory=client_factory,
        )

    # =========================================================================
    # IMPORT / SYNC
    # =========================================================================

    async def bootstrap(self, hotel_id: str, property_id: str, trace_id: Optional[str] = None) -> BootstrapResult:
        connection = await self.connections.get_active_connection(hotel_id, self.config.provider)
        return await self.bootstrapper.bootstrap(hotel_id, property_id, trace_id=trace_id, connection=connection)

    async def pull(
        self,
        connection_id: str,
        date_range: Optional[Tuple[date, date]] = None,
        trace_id: Optional[str] = None,
    ) -> PullResult:
        return await self.puller.pull_reservations(connection_id, date_range=date_range, trace_id=trace_id)

    async def push(
        self,
        hotel_id: str,
        room_type_id: str,
        start: date,
        end: date,
        changes: CalendarChanges,
        trace_id: Optional[str] = None,
    ) -> PushResult:
        return await self.pusher.push_rates(hotel_id, room_type_id, start, end, changes, trace_id=trace_id)

    async def run_scheduled_pulls(self) -> Dict[str, Any]:
        return await self.puller.run_all_scheduled()

    # =========================================================================
    # READ-ONLY
    # =========================================================================

    async def check_availability(
        self,
        room_type_id: str,
        check_in: date,
        check_out: date,
        rooms: int = 1,
        exclude_reservation_id: Optional[str] = None,
        allow_overbooking: bool = False,
    ) -> Availability:
        return await self.inventory.check_availability(
            room_type_id,
            check_in,
            check_out,
            allow_overbooking=allow_overbooking,
            exclude_reservation_id=exclude_reservation_id,
            rooms=rooms,
        )

    async def token_diagnostics(self) -> List[Dict[str, Any]]:
        return await self.tokens.diagnostics()

    async def get_connection(self, connection_id: str) -> Optional[Connection]:
        return await self.connections.get_connection(connection_id)

    async def set_sync_enabled(self, hotel_id: str, enabled: bool) -> None:
        await self.sync_state.ensure(hotel_id)
        await self.sync_state.set_enabled(hotel_id, enabled)
