from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# Error codes shared by the registry, state service and delivery sink.
UNKNOWN_SESSION = "unknown_session"
INVALID_STATE = "invalid_state"
ALREADY_ASSIGNED = "already_assigned"
NOT_ASSIGNED = "not_assigned"
DELIVERY_ERROR = "delivery_error"
TELEGRAM_ERROR = "telegram_error"
NOT_CONFIGURED = "not_configured"
NO_CONNECTION = "no_connection"
MALFORMED = "malformed"
CHANNEL_MISMATCH = "channel_mismatch"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T = None) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
