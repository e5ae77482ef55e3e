"""Error taxonomy for the capture engine.

Every failure the engine can hit is recoverable at the operation boundary:
- Configuration errors degrade the engine to local-only mode
- Authentication errors trigger interactive or anonymous sign-in
- Capture errors abort a single create, nothing is persisted
- Fetch errors during merge leave the local cache untouched
- Mirror errors during lifecycle transitions are logged and reported
"""

from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AhaError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(AhaError):
    """Remote credentials or other settings are missing or invalid."""


class ValidationError(AhaError):
    """A capture draft failed validation."""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name


class InvalidTransitionError(AhaError):
    """A status change is not allowed by the lifecycle."""


class EntryNotFoundError(AhaError, KeyError):
    """No entry with the given id exists in the local cache."""

    def __str__(self) -> str:
        return f"Entry not found: {self.args[0]}" if self.args else "Entry not found"


class RemoteError(AhaError):
    """The remote store rejected or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """The network or the remote store cannot be reached."""


class RemoteTimeoutError(RemoteError):
    """A remote call did not complete in time."""


class AuthenticationError(RemoteError):
    """No authenticated session could be established."""


class CaptureError(AhaError):
    """A capture was aborted; nothing was written locally."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ErrorKind(Enum):
    """Where in the engine an error surfaced."""
    CONFIGURATION = "config"
    AUTHENTICATION = "auth"
    CAPTURE = "capture"
    FETCH = "sync"
    MIRROR = "mirror"


@dataclass
class ErrorEvent:
    """A recoverable error reported to outer surfaces."""
    kind: ErrorKind
    message: str
    error_type: str
    entry_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    context: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        kind: ErrorKind,
        error: BaseException,
        entry_id: Optional[str] = None,
        **context: Any
    ) -> "ErrorEvent":
        return cls(
            kind=kind,
            message=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            entry_id=entry_id,
            context=context
        )

    @property
    def event_type(self) -> str:
        return f"{self.kind.value}.failed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'error_type': self.error_type,
            'entry_id': self.entry_id,
            'timestamp': self.timestamp.isoformat(),
            'context': self.context
        }
