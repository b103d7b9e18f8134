"""Error taxonomy shared by the session layer, the core components and the tool boundary."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class SessionErrorKind(str, Enum):
    LOGIN_REJECTED = "LOGIN_REJECTED"
    IDENTITY_REJECTED = "IDENTITY_REJECTED"
    NOT_CONNECTED = "NOT_CONNECTED"
    TRANSPORT = "TRANSPORT"


class RemoteErrorKind(str, Enum):
    CHANNEL_REJECTED = "CHANNEL_REJECTED"
    SCRY_FAILED = "SCRY_FAILED"
    TRANSPORT = "TRANSPORT"


class TlonMcpError(Exception):
    """Base class for every error the core raises on purpose."""

    error_type = "ERROR"

    def __init__(self, message: str, *, data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.data = data or {}

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "type": self.error_type,
                "message": str(self),
                "data": self.data,
            }
        }


class InvalidArgumentError(TlonMcpError, ValueError):
    error_type = "INVALID_ARGUMENT"


class SessionError(TlonMcpError):
    """Login or identity query against the ship failed."""

    error_type = "SESSION_ERROR"

    def __init__(self, kind: SessionErrorKind, message: str, *, status: Optional[int] = None):
        super().__init__(message, data={"kind": kind.value, "status": status})
        self.kind = kind
        self.status = status


class SessionLostError(TlonMcpError):
    """The liveness check and the single reconnect attempt both failed."""

    error_type = "SESSION_LOST"

    def __init__(self, original: BaseException, reconnect_error: BaseException):
        super().__init__(
            "Connection to ship lost and reconnection failed",
            data={"original": str(original), "reconnect_error": str(reconnect_error)},
        )
        self.original = original
        self.reconnect_error = reconnect_error


class UnresolvedRecipientError(TlonMcpError):
    error_type = "UNRESOLVED_RECIPIENT"

    def __init__(self, name: str, message: Optional[str] = None):
        super().__init__(
            message or f'Could not find a contact with the nickname "{name}"',
            data={"name": name},
        )
        self.name = name


class RemoteActionError(TlonMcpError):
    """The ship rejected a poke or scry, or the request never reached it."""

    error_type = "REMOTE_ACTION_FAILED"

    def __init__(
        self,
        kind: RemoteErrorKind,
        operation: str,
        message: str,
        *,
        status: Optional[int] = None,
    ):
        super().__init__(message, data={"kind": kind.value, "operation": operation, "status": status})
        self.kind = kind
        self.operation = operation
        self.status = status


class NormalizationFallback(TlonMcpError):
    """Raw history could not be formatted; callers substitute the raw payload."""

    error_type = "NORMALIZATION_FALLBACK"
