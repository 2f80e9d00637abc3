from __future__ import annotations

import logging
from typing import Any, Final, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import Response

from errors import ConflictError, NotFoundError, StorageError
from etag import format_etag, generate_etag
from http_cache import cache_control_header, if_none_match_matches
from responses import envelope, error_response, product_to_dict, success_response
from store import DuplicateRecordError, ProductStore, RecordNotFoundError, StoreError
from validation import (
    Err,
    validate_create_payload,
    validate_field_selection,
    validate_status_filter,
    validate_update_payload,
)

logger = logging.getLogger("api.products")

router = APIRouter(prefix="/products", tags=["products"])

DEFAULT_CACHE_MAX_AGE_SECONDS: Final[int] = 60
PUBLIC_PRODUCT_STATUS: Final[str] = "ACTIVE"

FIELDS_QUERY_DESCRIPTION: Final[str] = (
    "Comma-separated product attributes to include in the response"
)


def get_product_store(request: Request) -> ProductStore:
    return request.app.state.product_store


def _cache_max_age(request: Request) -> int:
    max_age = getattr(
        request.app.state, "cache_max_age_seconds", DEFAULT_CACHE_MAX_AGE_SECONDS
    )
    return int(max_age)


def _cached_response(
    request: Request, *, message: str, data: Any, public: bool
) -> Response:
    payload = envelope(message, data)
    etag = format_etag(generate_etag(payload))
    headers = {
        "ETag": etag,
        "Cache-Control": cache_control_header(
            public=public, max_age=_cache_max_age(request)
        ),
    }

    if if_none_match_matches(request.headers.get("if-none-match"), etag):
        return Response(status_code=304, headers=headers)

    return success_response(message, data, headers=headers)


@router.post("", status_code=201)
def create_product(
    request: Request,
    payload: Any = Body(default=None),
    store: ProductStore = Depends(get_product_store),
) -> Response:
    validated = validate_create_payload(payload)
    if isinstance(validated, Err):
        return error_response(validated.error)

    data = validated.value
    try:
        product = store.create(data)
    except DuplicateRecordError:
        return error_response(
            ConflictError(f"Product with sku {data['sku']!r} already exists")
        )
    except StoreError:
        return error_response(StorageError("Product could not be created"))

    logger.info("product.created", extra={"product_id": product.id, "sku": product.sku})
    return success_response(
        "Product Created Successfully",
        product_to_dict(product),
        status_code=201,
        headers={"Location": f"{request.url.path.rstrip('/')}/{product.id}"},
    )


@router.get("")
def list_products(
    request: Request,
    fields: Optional[str] = Query(default=None, description=FIELDS_QUERY_DESCRIPTION),
    status: Optional[str] = Query(
        default=None, description="Filter by lifecycle status"
    ),
    store: ProductStore = Depends(get_product_store),
) -> Response:
    selection = validate_field_selection(fields)
    if isinstance(selection, Err):
        return error_response(selection.error)

    status_filter = validate_status_filter(status)
    if isinstance(status_filter, Err):
        return error_response(status_filter.error)

    try:
        products = store.find_many(status=status_filter.value)
    except StoreError:
        return error_response(StorageError("Products could not be retrieved"))

    return _cached_response(
        request,
        message="Products Retrieved Successfully",
        data=[product_to_dict(product, selection.value) for product in products],
        public=status_filter.value == PUBLIC_PRODUCT_STATUS,
    )


@router.get("/{product_id}")
def get_product(
    request: Request,
    product_id: str,
    fields: Optional[str] = Query(default=None, description=FIELDS_QUERY_DESCRIPTION),
    store: ProductStore = Depends(get_product_store),
) -> Response:
    selection = validate_field_selection(fields)
    if isinstance(selection, Err):
        return error_response(selection.error)

    try:
        product = store.find_by_id(product_id)
    except RecordNotFoundError:
        return error_response(NotFoundError("Product not found"))
    except StoreError:
        return error_response(StorageError("Product could not be retrieved"))

    return _cached_response(
        request,
        message="Product Retrieved Successfully",
        data=product_to_dict(product, selection.value),
        public=product.status == PUBLIC_PRODUCT_STATUS,
    )


@router.put("/{product_id}")
def update_product(
    product_id: str,
    payload: Any = Body(default=None),
    store: ProductStore = Depends(get_product_store),
) -> Response:
    validated = validate_update_payload(payload)
    if isinstance(validated, Err):
        return error_response(validated.error)

    data = validated.value
    try:
        store.update(product_id, data)
    except DuplicateRecordError:
        return error_response(
            ConflictError(f"Product with sku {data.get('sku')!r} already exists")
        )
    except RecordNotFoundError:
        # Mutations on unknown ids surface as 500, unlike the 404 on reads.
        logger.warning("product.update_missing", extra={"product_id": product_id})
        return error_response(StorageError("Product update failed"))
    except StoreError:
        return error_response(StorageError("Product update failed"))

    logger.info(
        "product.updated",
        extra={"product_id": product_id, "fields": sorted(data)},
    )
    return success_response("Product Updated Successfully")


@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    store: ProductStore = Depends(get_product_store),
) -> Response:
    try:
        store.delete(product_id)
    except RecordNotFoundError:
        logger.warning("product.delete_missing", extra={"product_id": product_id})
        return error_response(StorageError("Product not deleted"))
    except StoreError:
        return error_response(StorageError("Product not deleted"))

    logger.info("product.deleted", extra={"product_id": product_id})
    return success_response("Product Deleted Successfully")
