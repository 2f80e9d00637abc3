from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Final, Mapping, Optional, Sequence

from fastapi.responses import JSONResponse, Response

from errors import ApiError
from models import Product

JSON_MEDIA_TYPE: Final[str] = "application/json"

_OMIT: Final[object] = object()


def _isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat()
    if text.endswith("+00:00"):
        return text[:-6] + "Z"
    return text


def product_to_dict(
    product: Product, fields: Optional[Sequence[str]] = None
) -> dict[str, Any]:
    full: dict[str, Any] = {
        "id": product.id,
        "sku": product.sku,
        "name": product.name,
        "description": product.description,
        "price": float(product.price),
        "status": product.status,
        "created_at": _isoformat(product.created_at),
        "updated_at": _isoformat(product.updated_at),
    }
    if fields is None:
        return full
    return {name: full[name] for name in fields}


def envelope(message: str, data: Any = _OMIT) -> dict[str, Any]:
    payload: dict[str, Any] = {"message": message}
    if data is not _OMIT:
        payload["data"] = data
    return payload


def render_json(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode(
        "utf-8"
    )


def success_response(
    message: str,
    data: Any = _OMIT,
    *,
    status_code: int = 200,
    headers: Optional[Mapping[str, str]] = None,
) -> Response:
    return Response(
        content=render_json(envelope(message, data)),
        status_code=status_code,
        media_type=JSON_MEDIA_TYPE,
        headers=dict(headers) if headers else None,
    )


def error_response(
    error: ApiError, *, headers: Optional[Mapping[str, str]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"message": error.message},
        headers=dict(headers) if headers else None,
    )
