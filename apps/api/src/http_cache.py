from __future__ import annotations

CACHE_CONTROL_PUBLIC = "public"
CACHE_CONTROL_PRIVATE = "private"


def _opaque_tag(value: str) -> str:
    text = value.strip()
    if text[:2] in ("W/", "w/"):
        text = text[2:].strip()
    return text


def if_none_match_matches(header: str | None, etag: str) -> bool:
    if header is None:
        return False

    text = header.strip()
    if text == "":
        return False
    if text == "*":
        return True

    target = _opaque_tag(etag)
    return any(_opaque_tag(item) == target for item in text.split(",") if item.strip())


def cache_control_header(*, public: bool, max_age: int) -> str:
    visibility = CACHE_CONTROL_PUBLIC if public else CACHE_CONTROL_PRIVATE
    return f"{visibility}, max-age={max(0, int(max_age))}"
