import logging
import re
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[a-zA-Z0-9\-_.]{1,128}$")

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags each request with an id (client-supplied if well-formed) for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_id = request.headers.get("X-Request-ID")
        request_id = client_id if client_id and _REQUEST_ID_RE.match(client_id) else uuid.uuid4().hex
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        started = time.monotonic()
        try:
            response = await call_next(request)
            # Query strings carry approval tokens and are never logged.
            logger.info(
                "%s %s -> %d (%d ms)",
                request.method, request.url.path, response.status_code,
                round((time.monotonic() - started) * 1000),
            )
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response
