import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

log = structlog.get_logger()

# Probes would drown out real traffic.
QUIET_PATHS = frozenset({"/health"})


def _session_fields(request: Request) -> dict:
    # Set by AccessTokenMiddleware, which runs inside this one.
    payload = getattr(request.state, "token_payload", None)
    if payload is None:
        return {"session": "anonymous"}
    return {"session": "authenticated", "uid": payload.subject_id}


class LoggingMiddleware(BaseHTTPMiddleware):
    """One structured line per request, correlated by X-Request-ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_contextvars()

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        request.state.request_id = request_id

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log.exception(
                "http_request_failed",
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(e),
                **_session_fields(request),
            )
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id

        if request.url.path in QUIET_PATHS and response.status_code < 400:
            return response

        emit = log.warning if response.status_code >= 500 else log.info
        emit(
            "http_request",
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
            **_session_fields(request),
        )
        return response
