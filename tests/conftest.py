from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from gems_api.core.errors import UpstreamUnavailable
from gems_api.models.dto import IdentityClaims
from gems_api.services.auth_service import AuthService
from gems_api.services.document_store import InMemoryDocumentStore
from gems_api.services.principal_repository import DocumentPrincipalRepository
from gems_api.services.refresh_chain import InMemoryRefreshChainStore
from gems_api.services.token_service import TokenService

SECRET = "test-secret-that-is-long-enough-for-hs256"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    """Maps known credentials to claims; everything else is invalid."""

    def __init__(self):
        self.credentials: dict[str, IdentityClaims] = {}
        self.down = False
        self.calls: list[str] = []

    def add(self, credential: str, uid: str, email_verified: bool = True) -> str:
        self.credentials[credential] = IdentityClaims(uid=uid, email_verified=email_verified)
        return credential

    async def verify(self, credential: str) -> Optional[IdentityClaims]:
        self.calls.append(credential)
        if self.down:
            raise UpstreamUnavailable("identity_provider")
        return self.credentials.get(credential)

    async def aclose(self) -> None:
        return None


USERS = {
    "u-alice": {"email": "alice@example.com", "displayName": "Alice", "role": "user", "status": "active"},
    "u-bob": {"email": "bob@example.com", "displayName": "Bob", "role": "user", "status": "active"},
    "u-root": {"email": "root@example.com", "displayName": "Root", "role": "admin", "status": "active"},
    "u-banned": {"email": "spam@example.com", "displayName": "Spam", "role": "user", "status": "banned"},
}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens(clock: FakeClock) -> TokenService:
    return TokenService(secret=SECRET, ttl_seconds=900, clock=clock)


@pytest.fixture
def identity() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore({"users": USERS})


@pytest.fixture
def chain(clock: FakeClock) -> InMemoryRefreshChainStore:
    return InMemoryRefreshChainStore(clock=clock)


@pytest.fixture
def auth_service(identity, store, chain, tokens) -> AuthService:
    return AuthService(
        identity_provider=identity,
        principals=DocumentPrincipalRepository(store),
        chain=chain,
        tokens=tokens,
        refresh_ttl_seconds=7 * 24 * 3600,
    )
