"""Channel sync error taxonomy.

Item-level errors (one booking, one room) are caught inside batches and land in
the result's error list. Call-level errors abort the operation, are written to
the audit ledger with the trace id, and propagate to the caller.
"""

from typing import Optional, Dict, Any

from lib.beds24.api_client import Beds24Timeout


class ChannelSyncError(Exception):
    """Base class for all engine errors."""

    code = "channel_sync_error"
    retryable = False

    def __init__(self, message: str, trace_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.trace_id = trace_id

    def to_dict(self) -> Dict[str, Any]:
        data = {"error": self.code, "message": self.message, "retryable": self.retryable}
        if self.trace_id:
            data["trace_id"] = self.trace_id
        return data


class AuthError(ChannelSyncError):
    """No usable token and no way to obtain one."""

    code = "auth_error"


class RefreshError(ChannelSyncError):
    """Provider rejected the refresh. Fatal to the current call, never retried inline."""

    code = "refresh_error"


class ConnectionNotFound(ChannelSyncError):
    code = "connection_not_found"


class RoomTypeNotFound(ChannelSyncError):
    code = "room_type_not_found"


class MappingNotFound(ChannelSyncError):
    """No identity mapping for an entity. Skip the item, continue the batch."""

    code = "mapping_not_found"

    def __init__(self, provider: str, entity_type: str, identifier: str, trace_id: Optional[str] = None):
        super().__init__(f"No {provider} mapping for {entity_type} {identifier}", trace_id)
        self.provider = provider
        self.entity_type = entity_type
        self.identifier = identifier


class CapacityError(ChannelSyncError):
    """Stay cannot be accepted for the requested range."""

    code = "capacity_error"

    def __init__(
        self,
        message: str,
        available_rooms: int = 0,
        reason: Optional[str] = None,
        waitlist_suggested: bool = True,
        trace_id: Optional[str] = None,
    ):
        super().__init__(message, trace_id)
        self.available_rooms = available_rooms
        self.reason = reason
        self.waitlist_suggested = waitlist_suggested

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "available_rooms": self.available_rooms,
            "reason": self.reason,
            "waitlist_suggested": self.waitlist_suggested,
        })
        return data


class ProviderError(ChannelSyncError):
    """Non-2xx (or unreachable) provider API."""

    code = "provider_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
        trace_id: Optional[str] = None,
    ):
        super().__init__(message, trace_id)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        data["body"] = self.body
        return data


class ProviderTimeout(ProviderError):
    """Network timeout talking to the provider. The caller/scheduler decides on retry."""

    code = "provider_timeout"
    retryable = True


class PartialImportError(ChannelSyncError):
    """At least one bootstrap phase failed. Results of the other phases are kept."""

    code = "partial_import"

    def __init__(self, result, trace_id: Optional[str] = None):
        errors = list(result.errors)
        super().__init__(f"Bootstrap finished with {len(errors)} error(s)", trace_id)
        self.result = result
        self.errors = errors

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


def provider_error(exc: Exception, trace_id: Optional[str] = None) -> ProviderError:
    """Wrap a Beds24 client exception; timeouts become retryable ProviderTimeout."""
    status_code = getattr(exc, "status_code", None)
    body = getattr(exc, "body", None)
    if isinstance(exc, Beds24Timeout):
        return ProviderTimeout(str(exc), status_code=status_code, body=body, trace_id=trace_id)
    return ProviderError(str(exc), status_code=status_code, body=body, trace_id=trace_id)
