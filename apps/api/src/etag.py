from __future__ import annotations

import hashlib
import json
from typing import Any

ETAG_HEX_LENGTH = 64


def canonical_json(value: Any) -> str:
    """Serialize ``value`` so that equal structures always yield equal text.

    Object keys are sorted at every depth and separators carry no whitespace,
    so key insertion order never leaks into the output. Sequences keep their
    order. Raises ``TypeError`` for values JSON cannot represent.
    """

    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def generate_etag(value: Any) -> str:
    """Return the SHA-256 hex digest of the canonical JSON form of ``value``."""

    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def format_etag(digest: str) -> str:
    return f'"{digest}"'
