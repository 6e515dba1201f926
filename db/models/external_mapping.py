from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, field_validator
import json


class EntityType(str, Enum):
    HOTEL = "hotel"
    ROOM_TYPE = "room_type"
    GUEST = "guest"
    BOOKING = "booking"


# Entity kinds that also get an internal -> external row
REVERSIBLE_ENTITY_TYPES = frozenset({EntityType.HOTEL, EntityType.ROOM_TYPE, EntityType.GUEST})

REVERSE_PREFIX = "internal_"


def reverse_entity_type(entity_type: str) -> str:
    """Synthesized entity type used for the reverse (internal -> external) row."""
    return f"{REVERSE_PREFIX}{entity_type}"


class ExternalMapping(BaseModel):
    """Provider id <-> internal id. Unique on (provider, entity_type, external_id)."""

    provider: str
    entity_type: str
    external_id: str
    internal_id: str
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator('metadata', mode='before')
    @classmethod
    def parse_metadata(cls, v):
        """asyncpg returns JSONB as text without a codec."""
        if v is None:
            return {}
        if isinstance(v, str):
            return json.loads(v)
        return v

    model_config = ConfigDict(from_attributes=True)

    @property
    def key(self) -> tuple:
        return (self.provider, self.entity_type, self.external_id)
