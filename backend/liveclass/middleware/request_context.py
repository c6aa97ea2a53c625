from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import sentry_sdk

from .. import metrics
from ..logging_context import pop_request_context, push_request_context

logger = logging.getLogger(__name__)


def _route_template(request: Request) -> str:
    # Templates keep class and subscription ids out of the metric labels.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id shared by its log lines and Sentry events,
    and time it per route template."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        tokens = push_request_context(request_id)
        request.state.request_id = request_id
        sentry_sdk.set_tag("request_id", request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            elapsed = time.perf_counter() - started
            route = _route_template(request)
            metrics.request_latency_seconds.labels(
                request.method, route, str(response.status_code)
            ).observe(elapsed)
            if response.status_code >= 500:
                logger.warning(
                    "%s %s answered %s",
                    request.method,
                    route,
                    response.status_code,
                    extra={"elapsed_ms": round(elapsed * 1000, 1)},
                )
        finally:
            pop_request_context(tokens)
        response.headers.setdefault("X-Request-ID", request_id)
        return response
