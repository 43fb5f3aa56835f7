from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

NOT_FOUND = "not_found"
INVALID_FORMAT = "invalid_format"
STORAGE_ERROR = "storage_error"


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

    @staticmethod
    def not_found(user_id: int) -> "Result[T]":
        return Result.failure(f"user {user_id} not found", NOT_FOUND)

    @property
    def is_not_found(self) -> bool:
        return not self.ok and self.error_code == NOT_FOUND

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
