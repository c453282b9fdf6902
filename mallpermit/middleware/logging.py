"""Access log for the permit API: one JSON line per request, tagged with caller and permit."""

import json
import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("mallpermit.access")

_PERMIT_PATH = re.compile(r"/work-permits/(?P<permit_id>[^/]+)")
_COLLECTION_VIEWS = {"stats", "overdue", "expiring"}


def permit_id_from_path(path: str):
    """The permit a request targets, or None for collection routes."""
    match = _PERMIT_PATH.search(path)
    if match is None or match.group("permit_id") in _COLLECTION_VIEWS:
        return None
    return match.group("permit_id")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
        start_time = time.perf_counter()
        request.state.request_id = request_id

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 1)
        entry = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "permit_id": permit_id_from_path(request.url.path),
            "actor_id": request.headers.get("X-Actor-Id"),
            "actor_role": request.headers.get("X-Actor-Role"),
            "status": response.status_code,
            "duration_ms": duration_ms,
        }
        # Refusals (403/409) are routine; only server errors are raised above INFO
        level = logging.ERROR if response.status_code >= 500 else logging.INFO
        logger.log(level, json.dumps(entry))

        response.headers["X-Request-ID"] = request_id
        return response
