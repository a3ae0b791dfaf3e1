import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Final

from cms_core.logging import reset_request_id, set_request_id
from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.types import ASGIApp, Message

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware:
    """
    Bind a request id to the logging context and write one access log line
    per request.

    The id is taken from ``X-Request-ID`` when the client sends one and is
    echoed back on the response.
    """

    def __init__(self, app: ASGIApp):
        self.app: Final[ASGIApp] = app

    async def __call__(
        self,
        scope: dict[str, Any],
        receive: Callable[[], Awaitable[Any]],
        send,
    ) -> Any:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return None

        request = Request(scope)
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = set_request_id(rid)
        started = time.perf_counter()
        status_code = 500

        async def send_with_request_id(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = rid
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            logger.info(
                "%s %s %s %.1fms",
                request.method,
                request.url.path,
                status_code,
                (time.perf_counter() - started) * 1000,
            )
            reset_request_id(token)
        return None
