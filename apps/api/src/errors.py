from __future__ import annotations

from typing import ClassVar, Iterable


class ApiError(Exception):
    """Base class for failures surfaced to clients as ``{"message": ...}``."""

    status_code: ClassVar[int] = 500
    default_message: ClassVar[str] = "Internal Server Error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Validation Error"

    def __init__(
        self,
        *,
        missing: Iterable[str] = (),
        invalid: Iterable[tuple[str, str]] = (),
        detail: str | None = None,
    ) -> None:
        self.missing = tuple(missing)
        self.invalid = tuple(invalid)

        parts: list[str] = []
        if self.missing:
            parts.append(f"missing required fields: {', '.join(self.missing)}")
        for field_name, reason in self.invalid:
            parts.append(f"{field_name} {reason}")
        if detail:
            parts.append(detail)

        message = self.default_message
        if parts:
            message = f"{message}: {'; '.join(parts)}"
        super().__init__(message)

    @property
    def fields(self) -> tuple[str, ...]:
        return self.missing + tuple(name for name, _reason in self.invalid)


class InvalidFieldsError(ApiError):
    status_code = 400
    default_message = "Invalid fields"

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = tuple(fields)
        super().__init__(f"{self.default_message}: {', '.join(self.fields)}")


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class StorageError(ApiError):
    status_code = 500
    default_message = "Internal Server Error"


class TooManyRequestsError(ApiError):
    status_code = 429
    default_message = "Too Many Requests"


class RateLimiterUnavailableError(ApiError):
    status_code = 503
    default_message = "Rate limiter unavailable"
