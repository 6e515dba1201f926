from datetime import datetime, date
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, field_validator
import json


class SyncState(BaseModel):
    """Per (hotel, provider) sync bookkeeping: enable flag, bootstrap marker, cursors."""

    hotel_id: str
    provider: str
    enabled: bool = False
    bootstrap_completed_at: Optional[datetime] = None
    cursors: Dict[str, str] = {}  # resource -> ISO date
    last_attempt_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    metadata: Dict[str, Any] = {}
    updated_at: Optional[datetime] = None

    @field_validator('cursors', 'metadata', mode='before')
    @classmethod
    def parse_json(cls, v):
        if v is None:
            return {}
        if isinstance(v, str):
            return json.loads(v)
        return v

    model_config = ConfigDict(from_attributes=True)

    def cursor(self, resource: str) -> Optional[date]:
        value = self.cursors.get(resource)
        return date.fromisoformat(value) if value else None
