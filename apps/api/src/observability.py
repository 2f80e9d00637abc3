from __future__ import annotations

import contextvars
import json
import logging
import sys
import time
import uuid
from http import HTTPStatus
from typing import Any, Final, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers, MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from errors import ApiError, ValidationError
from responses import error_response

TRACE_ID_HEADER_NAME: Final[str] = "X-Trace-Id"
MAX_TRACE_ID_LENGTH: Final[int] = 128

_trace_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "catalog_trace_id", default=None
)

request_logger = logging.getLogger("api.request")
error_logger = logging.getLogger("api.error")


def generate_trace_id() -> str:
    return uuid.uuid4().hex


def get_trace_id() -> Optional[str]:
    return _trace_id_ctx.get()


def _coerce_trace_id(value: Optional[str]) -> Optional[str]:
    candidate = (value or "").strip()
    if 0 < len(candidate) <= MAX_TRACE_ID_LENGTH:
        return candidate
    return None


def default_message_for_status(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def error_payload(
    *, status_code: int, message: Optional[str] = None
) -> dict[str, str]:
    """Body used for every failure: only a human readable ``message``."""

    return {"message": message or default_message_for_status(status_code)}


class TraceIdMiddleware:
    """Tag each HTTP exchange with a trace id and log its outcome.

    The id comes from the incoming ``X-Trace-Id`` header when usable and is
    otherwise generated. It is echoed on the response, attached to every log
    record emitted while the request runs, and used for the final
    ``request.completed`` line. Exceptions escaping the app become a bare 500.
    """

    def __init__(self, app: ASGIApp, header_name: str = TRACE_ID_HEADER_NAME) -> None:
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming = Headers(scope=scope).get(self.header_name)
        trace_id = _coerce_trace_id(incoming) or generate_trace_id()
        token = _trace_id_ctx.set(trace_id)
        started_at = time.perf_counter()
        sent_status: list[int] = []

        async def send_with_trace_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                sent_status.append(int(message["status"]))
                MutableHeaders(scope=message)[self.header_name] = trace_id
            await send(message)

        try:
            await self.app(scope, receive, send_with_trace_id)
        except Exception:
            error_logger.exception(
                "request.unhandled_error",
                extra={"method": scope.get("method"), "path": scope.get("path")},
            )
            if not sent_status:
                fallback = JSONResponse(
                    status_code=500, content=error_payload(status_code=500)
                )
                await fallback(scope, receive, send_with_trace_id)
        finally:
            _log_completed(
                scope,
                status_code=sent_status[0] if sent_status else None,
                started_at=started_at,
            )
            _trace_id_ctx.reset(token)


def _log_completed(
    scope: Scope, *, status_code: Optional[int], started_at: float
) -> None:
    request_logger.info(
        "request.completed",
        extra={
            "method": scope.get("method"),
            "path": scope.get("path"),
            "status_code": status_code,
            "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
        },
    )


# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName", "trace_id"}


def _utc_timestamp(created: float) -> str:
    seconds = time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(created))
    return f"{seconds}.{int((created % 1) * 1000):03d}Z"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_ATTRS
        }
        if record.exc_info:
            extra["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            extra["stack"] = self.formatStack(record.stack_info)

        return json.dumps(
            {
                "timestamp": _utc_timestamp(record.created),
                "level": record.levelname.lower(),
                "logger": record.name,
                "trace_id": getattr(record, "trace_id", None) or "-",
                "message": record.getMessage(),
                "extra": extra,
            },
            ensure_ascii=False,
            default=str,
        )


_base_record_factory = logging.getLogRecordFactory()
_logging_configured = False


def _record_with_trace_id(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _base_record_factory(*args, **kwargs)
    record.trace_id = get_trace_id() or "-"
    return record


def configure_logging(*, debug: bool = False, log_level: Optional[str] = None) -> None:
    """Send all records, uvicorn's included, to stdout as JSON lines.

    Safe to call repeatedly; only the first call installs the handler.
    """

    global _logging_configured
    if _logging_configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel((log_level or ("DEBUG" if debug else "INFO")).upper())
    logging.setLogRecordFactory(_record_with_trace_id)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True

    _logging_configured = True


def _describe_request_errors(errors: list[dict[str, Any]]) -> str:
    described: list[str] = []
    for error in errors:
        loc = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        msg = str(error.get("msg", "invalid value"))
        described.append(f"{loc} {msg}".strip() if loc else msg)
    return "; ".join(described)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        if exc.status_code >= 500:
            error_logger.error(
                "request.api_error",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": exc.message,
                },
            )
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        status_code = int(exc.status_code)
        message = exc.detail if isinstance(exc.detail, str) else None
        return JSONResponse(
            status_code=status_code,
            content=error_payload(status_code=status_code, message=message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = list(exc.errors())
        error_logger.warning(
            "request.validation_error",
            extra={"method": request.method, "path": request.url.path},
        )
        return error_response(ValidationError(detail=_describe_request_errors(errors)))
