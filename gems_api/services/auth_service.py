"""
Session lifecycle: login, access-token renewal with refresh rotation, logout.

    NoToken --login--> Valid --15 min--> Expired --refresh--> Valid
                                            \\--refresh fails--> NoToken

Every failure on these paths is the same opaque Unauthorized. Transport
failures of the identity provider or the chain store propagate as
UpstreamUnavailable instead, because retrying those can succeed.
"""

from typing import Optional

import structlog

from gems_api.core.config import settings
from gems_api.core.errors import Unauthorized
from gems_api.models.dto import (
    AccessTokenPayload,
    Principal,
    PrincipalStatus,
    Role,
    RotationResult,
)
from gems_api.services.identity_provider import IdentityProvider
from gems_api.services.principal_repository import PrincipalRepository
from gems_api.services.refresh_chain import RefreshChainStore
from gems_api.services.token_service import TokenService

logger = structlog.get_logger(__name__)


class AuthService:
    def __init__(
        self,
        identity_provider: IdentityProvider,
        principals: PrincipalRepository,
        chain: RefreshChainStore,
        tokens: TokenService,
        refresh_ttl_seconds: int = settings.REFRESH_TOKEN_TTL_SECONDS,
    ):
        self.identity_provider = identity_provider
        self.principals = principals
        self.chain = chain
        self.tokens = tokens
        self.refresh_ttl_seconds = refresh_ttl_seconds

    async def _active_principal(self, uid: str) -> Principal:
        principal = await self.principals.get(uid)
        if principal is None:
            logger.info("auth_rejected", step="principal_lookup", uid=uid)
            raise Unauthorized()
        if principal.status == PrincipalStatus.BANNED:
            logger.info("auth_rejected", step="principal_banned", uid=uid)
            raise Unauthorized()
        return principal

    def _issue(self, principal: Principal, email_verified: bool) -> str:
        return self.tokens.issue(AccessTokenPayload(
            subject_id=principal.uid,
            role=principal.role,
            email_verified=email_verified,
        ))

    async def login(self, id_token: str) -> RotationResult:
        """
        Start a session from an identity-provider token obtained at sign-in.

        The id token becomes the head of the principal's refresh chain.
        Unverified email addresses and banned principals are refused.
        """
        claims = await self.identity_provider.verify(id_token)
        if claims is None:
            logger.info("auth_rejected", step="login_credential")
            raise Unauthorized()
        if not claims.email_verified:
            logger.info("auth_rejected", step="email_unverified", uid=claims.uid)
            raise Unauthorized()

        principal = await self._active_principal(claims.uid)
        await self.chain.register(principal.uid, id_token, self.refresh_ttl_seconds)
        logger.info("session_started", uid=principal.uid)
        return RotationResult(
            access_token=self._issue(principal, claims.email_verified),
            refresh_credential=id_token,
            principal=principal,
        )

    async def rotate_refresh(self, existing: str, new_credential: Optional[str] = None) -> RotationResult:
        """
        Exchange a refresh credential for a fresh access token.

        With `new_credential`, the chain also moves to the new credential and
        `existing` can never be used again. The new credential must belong to
        the same principal; on any mismatch nothing is rotated.

        Raises:
            Unauthorized: any verification, status or chain check failed.
            UpstreamUnavailable: the identity provider or chain store is down.
        """
        if not existing:
            raise Unauthorized()

        claims = await self.identity_provider.verify(existing)
        if claims is None:
            logger.info("auth_rejected", step="existing_credential")
            raise Unauthorized()

        if new_credential is not None:
            if new_credential == existing:
                logger.info("auth_rejected", step="rotation_to_same_credential", uid=claims.uid)
                raise Unauthorized()
            new_claims = await self.identity_provider.verify(new_credential)
            if new_claims is None or new_claims.uid != claims.uid:
                logger.warning("auth_rejected", step="rotation_principal_mismatch", uid=claims.uid)
                raise Unauthorized()

        if not await self.chain.is_current(claims.uid, existing):
            logger.warning("auth_rejected", step="stale_refresh_credential", uid=claims.uid)
            raise Unauthorized()

        principal = await self._active_principal(claims.uid)
        access_token = self._issue(principal, claims.email_verified)

        if new_credential is None:
            # A rotation may have landed while the token was minted.
            if not await self.chain.is_current(principal.uid, existing):
                logger.warning("auth_rejected", step="rotated_during_refresh", uid=principal.uid)
                raise Unauthorized()
            logger.info("access_token_renewed", uid=principal.uid)
            return RotationResult(access_token=access_token, principal=principal)

        # Lost race: another rotation already moved the chain on.
        if not await self.chain.compare_and_swap(principal.uid, existing, new_credential, self.refresh_ttl_seconds):
            logger.warning("auth_rejected", step="rotation_lost_race", uid=principal.uid)
            raise Unauthorized()

        logger.info("refresh_credential_rotated", uid=principal.uid)
        return RotationResult(
            access_token=access_token,
            refresh_credential=new_credential,
            principal=principal,
        )

    async def logout(self, refresh_credential: Optional[str]) -> None:
        """Retire the chain head. Unknown or stale credentials are ignored."""
        if not refresh_credential:
            return
        claims = await self.identity_provider.verify(refresh_credential)
        if claims is None:
            return
        revoked = await self.chain.revoke(claims.uid, refresh_credential)
        logger.info("session_ended", uid=claims.uid, revoked=revoked)

    def current_payload(self, access_token: Optional[str]) -> Optional[AccessTokenPayload]:
        return self.tokens.verify(access_token)

    async def require_active_user(self, access_token: Optional[str]) -> Principal:
        payload = self.tokens.verify(access_token)
        if payload is None:
            raise Unauthorized()
        return await self._active_principal(payload.subject_id)

    async def require_admin(self, access_token: Optional[str]) -> Principal:
        """Admin claim in the token is re-checked against the stored role."""
        payload = self.tokens.verify(access_token)
        if payload is None or payload.role != Role.ADMIN:
            raise Unauthorized()
        principal = await self._active_principal(payload.subject_id)
        if principal.role != Role.ADMIN:
            logger.warning("auth_rejected", step="admin_role_revoked", uid=principal.uid)
            raise Unauthorized()
        return principal
