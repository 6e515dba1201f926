from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, field_validator


class Connection(BaseModel):
    """Hotel to provider link. secret_ref names the refresh secret; the secret never lives here."""

    id: str
    hotel_id: str
    provider: str
    property_id: str
    scopes: List[str] = []
    secret_ref: str
    active: bool = True
    last_token_use_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    credits_remaining: Optional[int] = None

    @field_validator('scopes', mode='before')
    @classmethod
    def scopes_none_to_empty(cls, v):
        return list(v) if v else []

    model_config = ConfigDict(from_attributes=True)
