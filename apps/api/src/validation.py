from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Any, Final, Generic, Optional, Type, TypeVar, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from errors import InvalidFieldsError, ValidationError
from models import DEFAULT_PRODUCT_STATUS, PRODUCT_STATUSES, ProductStatus

T = TypeVar("T")

PRODUCT_FIELDS: Final[tuple[str, ...]] = (
    "id",
    "sku",
    "name",
    "description",
    "price",
    "status",
    "created_at",
    "updated_at",
)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: Union[ValidationError, InvalidFieldsError]


Result = Union[Ok[T], Err]


def _reject_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


def _coerce_price(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    try:
        return float(value)
    except OverflowError:
        raise ValueError("must be a finite number") from None


Sku = Annotated[str, Field(max_length=64), AfterValidator(_reject_blank)]
Name = Annotated[str, Field(max_length=256), AfterValidator(_reject_blank)]
Price = Annotated[float, BeforeValidator(_coerce_price), Field(ge=0)]


class ProductCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, allow_inf_nan=False)

    sku: Sku
    name: Name
    description: Optional[str] = None
    price: Price
    status: ProductStatus = DEFAULT_PRODUCT_STATUS


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True, allow_inf_nan=False)

    sku: Optional[Sku] = None
    name: Optional[Name] = None
    description: Optional[str] = None
    price: Optional[Price] = None
    status: Optional[ProductStatus] = None

    @field_validator("sku", "name", "price", "status")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        # Omitting a field leaves it unchanged; only description can be cleared.
        if value is None:
            raise ValueError("must not be null")
        return value


_REASONS: Final[dict[str, str]] = {
    "string_type": "must be a string",
    "float_type": "must be a number",
    "float_parsing": "must be a number",
    "finite_number": "must be a finite number",
    "literal_error": f"must be one of: {', '.join(PRODUCT_STATUSES)}",
}


def _reason(error: dict[str, Any]) -> str:
    kind = error["type"]
    ctx = error.get("ctx") or {}
    if kind == "value_error":
        return str(ctx.get("error", error["msg"]))
    if error.get("input") is None:
        return "must not be null"
    if kind == "string_too_long":
        return f"must be at most {ctx['max_length']} characters"
    if kind == "greater_than_equal":
        return f"must be >= {ctx['ge']:g}"
    return _REASONS.get(kind, str(error["msg"]))


def _to_validation_error(exc: PydanticValidationError) -> ValidationError:
    missing: list[str] = []
    invalid: list[tuple[str, str]] = []
    for error in exc.errors():
        field_name = ".".join(str(part) for part in error["loc"]) or "body"
        if error["type"] == "missing":
            missing.append(field_name)
        elif error["type"] == "extra_forbidden":
            read_only = field_name in PRODUCT_FIELDS
            invalid.append(
                (field_name, "is read-only" if read_only else "is not allowed")
            )
        else:
            invalid.append((field_name, _reason(error)))
    return ValidationError(missing=missing, invalid=invalid)


def validate_payload(body: Any, model: Type[BaseModel]) -> Result[dict[str, Any]]:
    """Check ``body`` against ``model`` without touching storage.

    Every problem is collected before returning, so the error lists all
    missing and mistyped fields at once. On success the value holds only the
    fields the client sent; numbers are normalized to ``float``.
    """

    if not isinstance(body, dict):
        return Err(ValidationError(detail="request body must be a JSON object"))

    try:
        parsed = model.model_validate(body)
    except PydanticValidationError as exc:
        return Err(_to_validation_error(exc))
    return Ok(parsed.model_dump(exclude_unset=True))


def validate_create_payload(body: Any) -> Result[dict[str, Any]]:
    return validate_payload(body, ProductCreateRequest)


def validate_update_payload(body: Any) -> Result[dict[str, Any]]:
    return validate_payload(body, ProductUpdateRequest)


def validate_field_selection(
    fields_param: Optional[str],
) -> Result[Optional[tuple[str, ...]]]:
    """Parse a ``fields`` query value; ``Ok(None)`` selects every attribute."""

    if fields_param is None or fields_param.strip() == "":
        return Ok(None)

    selected: list[str] = []
    for item in fields_param.split(","):
        name = item.strip()
        if name and name not in selected:
            selected.append(name)

    if not selected:
        return Ok(None)

    unknown = [name for name in selected if name not in PRODUCT_FIELDS]
    if unknown:
        return Err(InvalidFieldsError(unknown))
    return Ok(tuple(selected))


def validate_status_filter(status: Optional[str]) -> Result[Optional[str]]:
    if status is None or status.strip() == "":
        return Ok(None)

    normalized = status.strip().upper()
    if normalized not in PRODUCT_STATUSES:
        return Err(
            ValidationError(
                invalid=[("status", f"must be one of: {', '.join(PRODUCT_STATUSES)}")]
            )
        )
    return Ok(normalized)
