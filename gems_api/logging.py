import logging
import sys

import structlog

from gems_api.core.config import settings, is_production

# Event keys whose values are bearer credentials.
SENSITIVE_KEYS = frozenset({
    "access_token",
    "refresh_token",
    "new_refresh_token",
    "refresh_credential",
    "id_token",
    "token",
    "authorization",
    "cookie",
})

REDACTED = "[redacted]"


def redact_credentials(logger, method_name, event_dict):
    """Replace credential values so tokens never reach log storage."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def configure_logging():
    """
    Route structlog and stdlib logging through one pipeline.

    Console output outside production, one JSON object per line in production.
    Credential-bearing keys are redacted before rendering in both modes.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        redact_credentials,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_production():
        renderer = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        renderer = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=shared_processors + renderer,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = []
        uvicorn_logger.propagate = True
