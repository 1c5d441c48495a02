from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    CALENDAR_PROVIDER = "calendar_provider"
    CALENDAR_CONFLICT = "calendar_conflict"
    NOT_FOUND = "not_found"
    MALFORMED_MARKER = "malformed_marker"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    DELIVERY_FAILED = "delivery_failed"
    UNKNOWN = "unknown"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: ErrorCode = ErrorCode.UNKNOWN) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def is_failure(self, code: ErrorCode) -> bool:
        return not self.ok and self.error_code == code
