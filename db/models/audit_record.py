from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, field_validator
import json


class AuditRecord(BaseModel):
    """Append-only record of one external interaction or engine operation."""

    id: Optional[int] = None
    provider: str
    operation: str
    status: str  # running, success, partial, error
    hotel_id: Optional[str] = None
    trace_id: str
    cost: int = 0
    credits_remaining: Optional[int] = None
    duration_ms: Optional[int] = None
    error: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @field_validator('payload', mode='before')
    @classmethod
    def parse_payload(cls, v):
        if isinstance(v, str):
            return json.loads(v)
        return v

    model_config = ConfigDict(from_attributes=True, frozen=True)
