"""Beds24 API v2 client.

Thin async wrapper over httpx. Every call takes the access token explicitly so
the caller decides which token (read or write) to spend. Responses come back
with the credit info parsed from the headers.

Usage:
    async with Beds24Client(base_url) as client:
        resp = await client.get_bookings(token, property_id, modified_from=start)
        for booking in resp.data:
            ...
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from lib.beds24.credits import CreditInfo, parse_credit_headers
from lib.beds24.models import (
    Beds24Property,
    Beds24RoomCalendar,
    Beds24TokenResponse,
)

API_TIMEOUT = 30.0
DEFAULT_BASE_URL = "https://api.beds24.com/v2"

# Safety stop for paginated listings
MAX_PAGES = 50


class Beds24APIError(Exception):
    """Provider answered with a non-2xx status or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class Beds24Timeout(Beds24APIError):
    """Request timed out or the connection failed."""


@dataclass
class ProviderResponse:
    """Parsed payload plus the credits the call(s) consumed."""

    data: Any
    credits: CreditInfo = field(default_factory=CreditInfo)
    raw: Any = None


class Beds24Client:
    """Async Beds24 client. Use as an async context manager."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = API_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "Beds24Client":
        kwargs = {"base_url": self.base_url, "timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        self._client = httpx.AsyncClient(**kwargs)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> tuple:
        if self._client is None:
            raise RuntimeError("Beds24Client must be used inside 'async with'")

        try:
            resp = await self._client.request(method, path, headers=headers, params=params, json=json)
        except httpx.TimeoutException as e:
            raise Beds24Timeout(f"Beds24 {method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise Beds24Timeout(f"Beds24 {method} {path} failed: {e}") from e

        credits = parse_credit_headers(resp.headers)
        logger.debug(
            f"Beds24 {method} {path} -> {resp.status_code} "
            f"(cost={credits.request_cost}, remaining={credits.remaining})"
        )

        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if resp.status_code >= 400:
            raise Beds24APIError(
                f"Beds24 API error: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                body=body,
            )
        if isinstance(body, dict) and body.get("success") is False:
            raise Beds24APIError(
                f"Beds24 API error: {body.get('error') or 'request rejected'}",
                status_code=resp.status_code,
                body=body,
            )
        return body, credits

    @staticmethod
    def _auth(token: str) -> Dict[str, str]:
        return {"token": token, "accept": "application/json"}

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def _get_all_pages(self, path: str, token: str, params: Dict[str, Any]) -> ProviderResponse:
        """Follow pages.nextPageExists, summing the cost of every page."""
        items: List[Any] = []
        total = CreditInfo()
        page = 1
        while True:
            query = dict(params)
            if page > 1:
                query["page"] = page
            body, credits = await self._request("GET", path, self._auth(token), params=query)
            data = self._unwrap(body)
            items.extend(data if isinstance(data, list) else [data])

            total.request_cost += credits.request_cost
            if credits.remaining is not None:
                total.remaining = credits.remaining
            total.resets_in = credits.resets_in

            pages = body.get("pages") if isinstance(body, dict) else None
            if not pages or not pages.get("nextPageExists"):
                break
            page += 1
            if page > MAX_PAGES:
                logger.warning(f"Beds24 {path}: stopped after {MAX_PAGES} pages")
                break
        return ProviderResponse(data=items, credits=total)

    async def refresh_token(self, refresh_token: str) -> ProviderResponse:
        """Exchange a refresh token for a new access token."""
        body, credits = await self._request(
            "GET", "/authentication/token", {"refreshToken": refresh_token, "accept": "application/json"}
        )
        return ProviderResponse(data=Beds24TokenResponse.model_validate(body), credits=credits, raw=body)

    async def get_property(self, token: str, property_id: str) -> ProviderResponse:
        """Property with all of its room types."""
        resp = await self._get_all_pages(
            "/properties", token, {"id": property_id, "includeAllRooms": "true"}
        )
        if not resp.data:
            raise Beds24APIError(f"Beds24 property {property_id} not found", status_code=404)
        resp.data = Beds24Property.model_validate(resp.data[0])
        return resp

    async def get_rooms_calendar(
        self, token: str, property_id: str, start: date, end: date
    ) -> ProviderResponse:
        """Availability, prices and restrictions per room for [start, end]."""
        resp = await self._get_all_pages(
            "/inventory/rooms/calendar",
            token,
            {
                "propertyId": property_id,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "includeNumAvail": "true",
                "includePrices": "true",
                "includeMinStay": "true",
                "includeMaxStay": "true",
                "includeMultiplier": "false",
                "includeOverride": "true",
                "includeChannels": "false",
            },
        )
        resp.data = [Beds24RoomCalendar.model_validate(item) for item in resp.data]
        return resp

    async def get_bookings(
        self,
        token: str,
        property_id: str,
        modified_from: Optional[date] = None,
        modified_to: Optional[date] = None,
    ) -> ProviderResponse:
        """Bookings created or modified inside the window.

        Items are returned as raw dicts; the caller validates each one with
        Beds24Booking so a single malformed booking does not sink the page.
        """
        params: Dict[str, Any] = {"propertyId": property_id}
        if modified_from:
            params["modifiedFrom"] = modified_from.isoformat()
        if modified_to:
            params["modifiedTo"] = modified_to.isoformat()
        return await self._get_all_pages("/bookings", token, params)

    async def post_rooms_calendar(self, token: str, payload: List[Dict[str, Any]]) -> ProviderResponse:
        """Write calendar lines. The body is a list of {roomId, calendar: [...]}."""
        body, credits = await self._request("POST", "/inventory/rooms/calendar", self._auth(token), json=payload)
        results = body if isinstance(body, list) else [body]
        return ProviderResponse(data=results, credits=credits, raw=body)
