from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, field_validator


class TokenType(str, Enum):
    READ = "read"
    WRITE = "write"


class ProviderToken(BaseModel):
    """Access token for the provider API. value is plaintext in memory only."""

    provider: str
    token_type: TokenType
    value: str
    scopes: List[str] = []
    properties_access: List[str] = []
    issued_at: datetime
    expires_at: Optional[datetime] = None  # None = long-lived token
    last_used_at: Optional[datetime] = None

    @field_validator('scopes', 'properties_access', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return list(v) if v else []

    model_config = ConfigDict(from_attributes=True)
