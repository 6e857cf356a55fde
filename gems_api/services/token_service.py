"""
Short-lived signed access tokens.

Tokens are HS256 JWTs carrying the subject, role and email-verified flag plus
issued-at/expiry claims. Nothing is stored server side: verification is a pure
function of the token, the secret and the clock.
"""

import time
from typing import Callable, Optional

import jwt
import structlog
from pydantic import ValidationError

from gems_api.core.config import settings
from gems_api.models.dto import AccessTokenPayload

logger = structlog.get_logger(__name__)

_REQUIRED_CLAIMS = ["sub", "role", "iat", "exp"]


class TokenService:
    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 15 * 60,
        algorithm: str = "HS256",
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("token secret must not be empty")
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self.clock = clock

    def issue(self, payload: AccessTokenPayload) -> str:
        issued_at = self.clock()
        claims = {
            "sub": payload.subject_id,
            "role": payload.role.value,
            "email_verified": payload.email_verified,
            "iat": int(issued_at),
            # Unrounded, so the token lives the full ttl.
            "exp": issued_at + self.ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Optional[AccessTokenPayload]:
        """
        Return the payload of a valid, unexpired token, else None.

        Malformed, forged and expired tokens all produce None; this never raises.
        """
        if not token:
            return None
        try:
            # Expiry is checked against self.clock below rather than wall time.
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": _REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
            )
        except jwt.PyJWTError as e:
            logger.debug("access_token_rejected", reason=type(e).__name__)
            return None

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self.clock() >= exp:
            logger.debug("access_token_rejected", reason="expired")
            return None

        try:
            return AccessTokenPayload(
                subject_id=claims["sub"],
                role=claims["role"],
                email_verified=bool(claims.get("email_verified", False)),
            )
        except ValidationError:
            logger.debug("access_token_rejected", reason="bad_claims")
            return None


default_token_service = TokenService(
    secret=settings.JWT_SECRET,
    ttl_seconds=settings.ACCESS_TOKEN_TTL_SECONDS,
    algorithm=settings.JWT_ALGORITHM,
)


def issue_access_token(payload: AccessTokenPayload) -> str:
    return default_token_service.issue(payload)


def verify_access_token(token: Optional[str]) -> Optional[AccessTokenPayload]:
    return default_token_service.verify(token)
