"""
Channel Sync Service - keep PMS inventory, reservations and rates in step with Beds24.

Usage:
    from services.channel import Service

    service = Service()
    result = await service.bootstrap(hotel_id, property_id)
    pulled = await service.pull(connection_id)
    pushed = await service.push(hotel_id, room_type_id, start, end, CalendarChanges(rate=120))
"""

from services.channel.bootstrap import Bootstrapper, BootstrapResult, PhaseResult
from services.channel.config import ChannelConfig
from services.channel.errors import (
    AuthError,
    CapacityError,
    ChannelSyncError,
    ConnectionNotFound,
    MappingNotFound,
    PartialImportError,
    ProviderError,
    ProviderTimeout,
    RefreshError,
    RoomTypeNotFound,
)
from services.channel.inventory import Availability, InventoryEngine
from services.channel.ledger import AuditLedger, SyncStateStore
from services.channel.mapping_store import BidirectionalMapping, MappingStore
from services.channel.pull import PullResult, PullWorker
from services.channel.push import PushResult, PushWorker
from services.channel.service import Service
from services.channel.status import ProviderStatus, map_status
from services.channel.token_manager import TokenManager, TokenState

__all__ = [
    "Service",
    "ChannelConfig",
    "TokenManager",
    "TokenState",
    "MappingStore",
    "BidirectionalMapping",
    "InventoryEngine",
    "Availability",
    "Bootstrapper",
    "BootstrapResult",
    "PhaseResult",
    "PullWorker",
    "PullResult",
    "PushWorker",
    "PushResult",
    "AuditLedger",
    "SyncStateStore",
    "ProviderStatus",
    "map_status",
    "ChannelSyncError",
    "AuthError",
    "RefreshError",
    "ConnectionNotFound",
    "RoomTypeNotFound",
    "MappingNotFound",
    "CapacityError",
    "ProviderError",
    "ProviderTimeout",
    "PartialImportError",
]
