# Application wiring: settings -> stores -> services -> FastAPI app.

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import uuid

import structlog
from redis.asyncio import Redis

from gems_api.core.config import settings
from gems_api.core.errors import MalformedInput, Unauthorized, UpstreamUnavailable
from gems_api.core.middleware import AccessTokenMiddleware
from gems_api.logging import configure_logging
from gems_api.middleware.logging import LoggingMiddleware
from gems_api.models.dto import ErrorResponse
from gems_api.api.routes import router as api_router, clear_session_cookies
from gems_api.services.auth_service import AuthService
from gems_api.services.document_store import InMemoryDocumentStore
from gems_api.services.gem_service import GemService
from gems_api.services.identity_provider import HttpIdentityProvider, UnconfiguredIdentityProvider
from gems_api.services.principal_repository import DocumentPrincipalRepository
from gems_api.services.refresh_chain import InMemoryRefreshChainStore, RedisRefreshChainStore
from gems_api.services.token_service import default_token_service

logger = structlog.get_logger(__name__)

# --- Application Lifecycle Management ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", version=settings.VERSION, env=settings.ENV)

    if settings.GEMS_DATA_FILE:
        store = InMemoryDocumentStore.from_file(settings.GEMS_DATA_FILE)
    else:
        logger.warning("no_seed_data", detail="GEMS_DATA_FILE not set; starting with an empty store")
        store = InMemoryDocumentStore()

    if settings.IDENTITY_PROVIDER_URL:
        identity_provider = HttpIdentityProvider()
    else:
        logger.warning("identity_provider_unconfigured")
        identity_provider = UnconfiguredIdentityProvider()

    redis_client = None
    if settings.ENABLE_REDIS and settings.REDIS_URL:
        redis_client = Redis.from_url(settings.REDIS_URL)
        chain = RedisRefreshChainStore(redis_client)
    else:
        logger.warning("refresh_chain_in_memory", detail="Redis disabled; rotation state is per-process")
        chain = InMemoryRefreshChainStore()

    app.state.gem_service = GemService(store)
    await app.state.gem_service.reindex()
    app.state.auth_service = AuthService(
        identity_provider=identity_provider,
        principals=DocumentPrincipalRepository(store),
        chain=chain,
        tokens=default_token_service,
    )

    yield

    logger.info("application_shutdown")
    await identity_provider.aclose()
    if redis_client is not None:
        await redis_client.aclose()


def _error(status_code: int, error: str, detail: str, retry_after_seconds=None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, retry_after_seconds=retry_after_seconds)
    headers = {"Retry-After": str(retry_after_seconds)} if retry_after_seconds else None
    return JSONResponse(status_code=status_code, content={"detail": body.model_dump()}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(MalformedInput)
    async def malformed_input_handler(request: Request, exc: MalformedInput):
        logger.warning("malformed_input", error=str(exc))
        return _error(status.HTTP_400_BAD_REQUEST, "MALFORMED_INPUT", str(exc))

    @app.exception_handler(Unauthorized)
    async def unauthorized_handler(request: Request, exc: Unauthorized):
        # One answer for every cause: expired, forged, banned or mismatched.
        response = _error(status.HTTP_401_UNAUTHORIZED, "UNAUTHORIZED", "No valid session. Please sign in again.")
        clear_session_cookies(response)
        return response

    @app.exception_handler(UpstreamUnavailable)
    async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable):
        logger.error("upstream_unavailable", service=exc.service)
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "UPSTREAM_UNAVAILABLE",
            "A dependent service is temporarily unavailable. Please retry.",
            retry_after_seconds=exc.retry_after_seconds,
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        error_id = str(uuid.uuid4())
        logger.error("unhandled_exception", error_id=error_id, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": {
                    "error": "INTERNAL_SERVER_ERROR",
                    "detail": "An unexpected error occurred. Please report this error ID.",
                    "error_id": error_id
                }
            }
        )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.BRIEF_DESCRIPTION,
        lifespan=lifespan,
        docs_url=None if settings.ENV == "production" else "/docs",
        redoc_url=None,
    )

    # Starlette runs the last-added middleware first: logging wraps auth.
    app.add_middleware(AccessTokenMiddleware)
    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        return {"status": "ok", "version": settings.VERSION}

    return app


app = create_app()
