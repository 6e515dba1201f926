"""Shared fixtures for channel engine tests: in-memory repos and a fake provider."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from db.models.connection import Connection
from db.models.provider_token import ProviderToken, TokenType
from lib.beds24.api_client import ProviderResponse
from lib.beds24.credits import CreditInfo
from lib.beds24.models import Beds24Property, Beds24RoomCalendar, Beds24TokenResponse
from services.channel.config import ChannelConfig
from services.channel.connection_repo import MockConnectionRepo, MockSecretResolver
from services.channel.ledger_repo import MockAuditRepo, MockSyncStateRepo
from services.channel.mapping_repo import MockMappingRepo
from services.channel.pms_repo import MockPMSRepo
from services.channel.service import Service
from services.channel.token_repo import MockTokenRepo

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
HOTEL_ID = "hotel-1"
PROPERTY_ID = "12345"


class FakeBeds24:
    """Stands in for Beds24Client. Set the attributes, then pass `factory` as client_factory.

    An attribute holding an exception makes the matching call raise it.
    """

    def __init__(self):
        self.property: Any = None
        self.calendar: Any = []
        self.bookings: Any = []
        self.token_response: Any = Beds24TokenResponse(token="fresh-token", expiresIn=86400)
        self.post_results: List[Any] = []  # one entry per POST; default is accepted
        self.credits = CreditInfo(request_cost=1, remaining=900)
        self.calls: List[tuple] = []
        self.posted: List[List[Dict[str, Any]]] = []

    def factory(self) -> "FakeBeds24":
        return self

    async def __aenter__(self) -> "FakeBeds24":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    def _respond(self, value: Any) -> ProviderResponse:
        if isinstance(value, Exception):
            raise value
        return ProviderResponse(data=value, credits=self.credits, raw=value)

    async def refresh_token(self, refresh_token: str) -> ProviderResponse:
        self.calls.append(("refresh_token", refresh_token))
        return self._respond(self.token_response)

    async def get_property(self, token: str, property_id: str) -> ProviderResponse:
        self.calls.append(("get_property", token, property_id))
        return self._respond(self.property)

    async def get_rooms_calendar(self, token: str, property_id: str, start: date, end: date) -> ProviderResponse:
        self.calls.append(("get_rooms_calendar", token, property_id, start, end))
        return self._respond(self.calendar)

    async def get_bookings(self, token: str, property_id: str, modified_from=None, modified_to=None):
        self.calls.append(("get_bookings", token, property_id, modified_from, modified_to))
        return self._respond(self.bookings)

    async def post_rooms_calendar(self, token: str, payload: List[Dict[str, Any]]) -> ProviderResponse:
        self.calls.append(("post_rooms_calendar", token))
        self.posted.append(payload)
        result = self.post_results.pop(0) if self.post_results else [{"success": True}]
        return self._respond(result)

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]


def make_token(token_type: TokenType = TokenType.READ, value: str = "stored-token",
               expires_in: Optional[timedelta] = timedelta(hours=12),
               issued_at: Optional[datetime] = None) -> ProviderToken:
    issued = issued_at or NOW - timedelta(hours=1)
    return ProviderToken(
        provider="beds24",
        token_type=token_type,
        value=value,
        scopes=["read:bookings"],
        properties_access=[PROPERTY_ID],
        issued_at=issued,
        expires_at=NOW + expires_in if expires_in is not None else None,
    )


def make_property(rooms: Optional[List[Dict[str, Any]]] = None) -> Beds24Property:
    return Beds24Property.model_validate({
        "id": int(PROPERTY_ID),
        "name": "Harbour View",
        "propKey": "HV",
        "city": "Lisbon",
        "timeZone": "Europe/Lisbon",
        "roomTypes": rooms if rooms is not None else [
            {"id": 501, "name": "Double", "qty": 3, "maxPeople": 2, "minPrice": 90},
            {"id": 502, "name": "Suite", "qty": 1, "maxPeople": 4, "minPrice": 180},
        ],
    })


def make_calendar(room_id, entries: List[Dict[str, Any]]) -> Beds24RoomCalendar:
    return Beds24RoomCalendar.model_validate({"roomId": room_id, "calendar": entries})


@pytest.fixture
def config() -> ChannelConfig:
    return ChannelConfig(token_key="test-key", push_batch_delay=0.0)


@pytest.fixture
def fake_provider() -> FakeBeds24:
    return FakeBeds24()


@pytest.fixture
def connection() -> Connection:
    return Connection(
        id="conn-1",
        hotel_id=HOTEL_ID,
        provider="beds24",
        property_id=PROPERTY_ID,
        secret_ref="BEDS24_REFRESH_HOTEL_1",
    )


@pytest.fixture
def repos(connection) -> Dict[str, Any]:
    return {
        "tokens": MockTokenRepo([make_token(TokenType.READ), make_token(TokenType.WRITE, "stored-write")]),
        "connections": MockConnectionRepo([connection]),
        "mappings": MockMappingRepo(),
        "pms": MockPMSRepo(),
        "audit": MockAuditRepo(),
        "sync_state": MockSyncStateRepo(),
        "secrets": MockSecretResolver({"BEDS24_REFRESH_HOTEL_1": "refresh-secret"}),
    }


@pytest.fixture
def service(config, repos, fake_provider) -> Service:
    return Service(
        config,
        token_repo=repos["tokens"],
        connection_repo=repos["connections"],
        mapping_repo=repos["mappings"],
        pms_repo=repos["pms"],
        audit_repo=repos["audit"],
        sync_state_repo=repos["sync_state"],
        secrets=repos["secrets"],
        client_factory=fake_provider.factory,
        today=lambda: TODAY,
        clock=lambda: NOW,
    )
