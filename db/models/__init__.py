from db.models.hotel import Hotel, RoomType, Guest
from db.models.reservation import Reservation, ReservationStatus, INACTIVE_STATUSES
from db.models.inventory_day import InventoryDay, DailyRate
from db.models.connection import Connection
from db.models.provider_token import ProviderToken, TokenType
from db.models.external_mapping import (
    ExternalMapping,
    EntityType,
    REVERSIBLE_ENTITY_TYPES,
    reverse_entity_type,
)
from db.models.sync_state import SyncState
from db.models.audit_record import AuditRecord

__all__ = [
    "Hotel",
    "RoomType",
    "Guest",
    "Reservation",
    "ReservationStatus",
    "INACTIVE_STATUSES",
    "InventoryDay",
    "DailyRate",
    "Connection",
    "ProviderToken",
    "TokenType",
    "ExternalMapping",
    "EntityType",
    "REVERSIBLE_ENTITY_TYPES",
    "reverse_entity_type",
    "SyncState",
    "AuditRecord",
]
