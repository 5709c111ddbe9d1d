"""Request id middleware.

Accepts a caller-supplied ``X-Request-Id`` when it looks sane, otherwise mints
one. The id is bound to the structlog context for the duration of the request
and echoed on the response.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-Id"
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _request_id(request: Request) -> str:
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    return supplied if _VALID_ID.match(supplied) else uuid.uuid4().hex


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id
        with structlog.contextvars.bound_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        ):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
