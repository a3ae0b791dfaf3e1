import logging

from cms_core.exceptions import (
    CMSError,
    DuplicateNameError,
    DuplicateSlugError,
    ValidationFailedError,
)
from cms_db import InvalidFilterError, UniqueViolationError
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

# Singular nouns used in conflict messages, keyed by table name
_TABLE_NOUNS = {
    "posts": "post",
    "pages": "page",
    "categories": "category",
    "galleries": "gallery",
    "tags": "tag",
}

_STATUS_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def conflict_error(exc: UniqueViolationError) -> CMSError:
    """Translate a unique constraint violation into the matching 409 error."""
    noun = _TABLE_NOUNS.get(exc.table, "resource")
    if exc.field == "slug":
        return DuplicateSlugError(f"A {noun} with this slug already exists")
    field = exc.field or "value"
    return DuplicateNameError(f"A {noun} with this {field} already exists")


def _error_response(exc: CMSError) -> JSONResponse:
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def cms_error_handler(_: Request, exc: CMSError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message, exc_info=exc.__cause__)
    return _error_response(exc)


async def unique_violation_handler(
    _: Request, exc: UniqueViolationError
) -> JSONResponse:
    logger.info("Unique constraint violated on %s.%s", exc.table, exc.field)
    return _error_response(conflict_error(exc))


async def invalid_filter_handler(_: Request, exc: InvalidFilterError) -> JSONResponse:
    return _error_response(ValidationFailedError(str(exc), field=exc.column))


async def request_validation_handler(
    _: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    error = ValidationFailedError(details=jsonable_encoder(details))
    return _error_response(error)


async def http_exception_handler(
    _: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        {"error": code, "message": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return _error_response(CMSError())


class InternalErrorMiddleware:
    """
    Render unexpected exceptions as ``INTERNAL_ERROR`` inside the middleware
    stack, so the response still passes through CORS and request-id
    handling on its way out.

    Errors raised after the response has started are re-raised.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking_start(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking_start)
        except Exception as exc:
            if response_started:
                raise
            response = await unhandled_exception_handler(Request(scope), exc)
            await response(scope, receive, send)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CMSError, cms_error_handler)
    app.add_exception_handler(UniqueViolationError, unique_violation_handler)
    app.add_exception_handler(InvalidFilterError, invalid_filter_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    # Covers failures raised by middleware outside InternalErrorMiddleware
    app.add_exception_handler(Exception, unhandled_exception_handler)
