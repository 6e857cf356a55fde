from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from structlog.contextvars import bind_contextvars

from gems_api.core.config import settings


def extract_access_token(request: Request):
    """Access token from the HTTP-only cookie, or a bearer header for API clients."""
    token = request.cookies.get(settings.ACCESS_TOKEN_COOKIE)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


class AccessTokenMiddleware(BaseHTTPMiddleware):
    """
    Verifies the access token once per request and exposes the result as
    `request.state.token_payload` (None for anonymous or invalid sessions).

    It never rejects a request itself; routes decide what needs a session.
    """
    async def dispatch(self, request: Request, call_next):
        request.state.access_token = extract_access_token(request)
        request.state.token_payload = None

        auth_service = getattr(request.app.state, "auth_service", None)
        if auth_service is not None and request.state.access_token:
            payload = auth_service.current_payload(request.state.access_token)
            request.state.token_payload = payload
            if payload is not None:
                bind_contextvars(uid=payload.subject_id, role=payload.role.value)

        return await call_next(request)
