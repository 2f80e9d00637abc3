from __future__ import annotations

import math

import pytest

from errors import InvalidFieldsError, ValidationError
from validation import (
    Err,
    Ok,
    validate_create_payload,
    validate_field_selection,
    validate_status_filter,
    validate_update_payload,
)


def _error(result: object) -> ValidationError | InvalidFieldsError:
    assert isinstance(result, Err)
    return result.error


def test_create_payload_accepts_complete_body() -> None:
    body = {
        "name": "New Product",
        "description": "A new product",
        "price": 19.99,
        "sku": "SKU1",
    }
    assert validate_create_payload(body) == Ok(
        {
            "sku": "SKU1",
            "name": "New Product",
            "description": "A new product",
            "price": 19.99,
        }
    )


def test_create_payload_normalizes_integer_price() -> None:
    result = validate_create_payload({"name": "n", "price": 5, "sku": "s"})
    assert isinstance(result, Ok)
    assert result.value["price"] == 5.0
    assert isinstance(result.value["price"], float)


def test_create_payload_lists_missing_fields() -> None:
    error = _error(validate_create_payload({"name": "Incomplete"}))
    assert isinstance(error, ValidationError)
    assert error.status_code == 400
    assert error.missing == ("sku", "price")
    assert error.message.startswith("Validation Error")
    assert "sku" in error.message and "price" in error.message


@pytest.mark.parametrize(
    ("body", "field_name"),
    [
        ({"name": "n", "sku": "s", "price": "19.99"}, "price"),
        ({"name": "n", "sku": "s", "price": True}, "price"),
        ({"name": "n", "sku": "s", "price": -1}, "price"),
        ({"name": "n", "sku": "s", "price": math.inf}, "price"),
        ({"name": 3, "sku": "s", "price": 1}, "name"),
        ({"name": "  ", "sku": "s", "price": 1}, "name"),
        ({"name": "n", "sku": None, "price": 1}, "sku"),
        ({"name": "n", "sku": "s" * 65, "price": 1}, "sku"),
        ({"name": "n", "sku": "s", "price": 1, "status": "SOLD"}, "status"),
        ({"name": "n", "sku": "s", "price": 1, "description": 7}, "description"),
    ],
)
def test_create_payload_rejects_mistyped_fields(body: dict, field_name: str) -> None:
    error = _error(validate_create_payload(body))
    assert isinstance(error, ValidationError)
    assert error.fields == (field_name,)


def test_create_payload_rejects_unknown_and_read_only_keys() -> None:
    error = _error(
        validate_create_payload(
            {"name": "n", "sku": "s", "price": 1, "id": "abc", "color": "red"}
        )
    )
    assert isinstance(error, ValidationError)
    assert set(error.fields) == {"id", "color"}
    assert "id is read-only" in error.message
    assert "color is not allowed" in error.message


@pytest.mark.parametrize("body", [None, [], "text", 42])
def test_payload_must_be_an_object(body: object) -> None:
    for validate in (validate_create_payload, validate_update_payload):
        error = _error(validate(body))
        assert isinstance(error, ValidationError)
        assert "JSON object" in error.message


def test_update_payload_allows_partial_bodies() -> None:
    updated = validate_update_payload({"name": "Updated Name"})
    assert updated == Ok({"name": "Updated Name"})
    assert validate_update_payload({}) == Ok({})
    assert validate_update_payload({"description": None}) == Ok({"description": None})


def test_update_payload_rejects_non_numeric_price() -> None:
    error = _error(validate_update_payload({"price": "not-a-number"}))
    assert isinstance(error, ValidationError)
    assert error.fields == ("price",)
    assert error.message == "Validation Error: price must be a number"


def test_update_payload_rejects_null_for_required_fields() -> None:
    error = _error(validate_update_payload({"name": None}))
    assert isinstance(error, ValidationError)
    assert error.message == "Validation Error: name must not be null"


def test_field_selection_absent_or_blank_selects_everything() -> None:
    assert validate_field_selection(None) == Ok(None)
    assert validate_field_selection("") == Ok(None)
    assert validate_field_selection(" , ,") == Ok(None)


def test_field_selection_parses_trims_and_dedupes() -> None:
    result = validate_field_selection(" name,price ,name,,id")
    assert result == Ok(("name", "price", "id"))


def test_field_selection_rejects_unknown_attributes() -> None:
    error = _error(validate_field_selection("name,invalid,colour"))
    assert isinstance(error, InvalidFieldsError)
    assert error.status_code == 400
    assert error.fields == ("invalid", "colour")
    assert error.message == "Invalid fields: invalid, colour"


def test_status_filter_normalizes_and_rejects_unknown_states() -> None:
    assert validate_status_filter(None) == Ok(None)
    assert validate_status_filter(" active ") == Ok("ACTIVE")

    error = _error(validate_status_filter("sold"))
    assert isinstance(error, ValidationError)
    assert "status must be one of" in error.message


@pytest.mark.parametrize("price", [10**400, -(10**400)])
def test_price_too_large_for_float_is_a_validation_error(price: int) -> None:
    results = (
        validate_create_payload({"name": "n", "sku": "s", "price": price}),
        validate_update_payload({"price": price}),
    )
    for result in results:
        error = _error(result)
        assert isinstance(error, ValidationError)
        assert error.fields == ("price",)
        assert error.message == "Validation Error: price must be a finite number"


def test_create_payload_rejects_null_price_and_status() -> None:
    body = {"name": "n", "sku": "s", "price": None, "status": None}
    error = _error(validate_create_payload(body))
    assert isinstance(error, ValidationError)
    assert set(error.fields) == {"price", "status"}
    assert "price must not be null" in error.message
    assert "status must not be null" in error.message


def test_payload_values_keep_their_declared_types() -> None:
    result = validate_create_payload(
        {"name": "n", "sku": "s", "price": 0, "status": "ACTIVE"}
    )
    assert result == Ok({"sku": "s", "name": "n", "price": 0.0, "status": "ACTIVE"})
