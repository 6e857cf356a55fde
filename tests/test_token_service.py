from __future__ import annotations

import jwt
import pytest

from gems_api.models.dto import AccessTokenPayload, Role
from gems_api.services.token_service import TokenService, issue_access_token, verify_access_token

from conftest import SECRET, FakeClock

PAYLOAD = AccessTokenPayload(subject_id="u-alice", role=Role.USER, email_verified=True)


def test_issue_then_verify_round_trips(tokens):
    assert tokens.verify(tokens.issue(PAYLOAD)) == PAYLOAD


def test_module_helpers_round_trip():
    admin = AccessTokenPayload(subject_id="u-root", role=Role.ADMIN, email_verified=False)
    assert verify_access_token(issue_access_token(admin)) == admin


def test_token_expires_after_fifteen_minutes(tokens, clock):
    token = tokens.issue(PAYLOAD)
    clock.advance(899)
    assert tokens.verify(token) == PAYLOAD
    clock.advance(1)
    assert tokens.verify(token) is None


def test_claims_carry_issue_and_expiry(tokens, clock):
    claims = jwt.decode(tokens.issue(PAYLOAD), SECRET, algorithms=["HS256"], options={"verify_exp": False})
    assert claims["sub"] == "u-alice"
    assert claims["role"] == "user"
    assert claims["exp"] - claims["iat"] == 900
    assert claims["iat"] == int(clock.now)


def test_fractional_issue_time_keeps_full_lifetime():
    clock = FakeClock(1_700_000_000.5)
    tokens = TokenService(secret=SECRET, ttl_seconds=900, clock=clock)
    token = tokens.issue(PAYLOAD)
    clock.advance(899.75)
    assert tokens.verify(token) == PAYLOAD
    clock.advance(0.25)
    assert tokens.verify(token) is None


def test_wrong_secret_is_rejected(tokens, clock):
    other = TokenService(secret="another-secret-that-is-also-long-enough", clock=clock)
    assert other.verify(tokens.issue(PAYLOAD)) is None


def test_tampered_token_is_rejected(tokens):
    header, body, signature = tokens.issue(PAYLOAD).split(".")
    forged_body = jwt.utils.base64url_encode(b'{"sub":"u-root","role":"admin","iat":1,"exp":9999999999}').decode()
    assert tokens.verify(".".join([header, forged_body, signature])) is None


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
def test_malformed_tokens_are_none_not_errors(tokens, token):
    assert tokens.verify(token) is None


def test_unknown_role_claim_is_rejected(tokens, clock):
    token = jwt.encode(
        {"sub": "u-alice", "role": "superuser", "iat": int(clock.now), "exp": int(clock.now) + 60},
        SECRET,
        algorithm="HS256",
    )
    assert tokens.verify(token) is None


def test_missing_expiry_is_rejected(tokens, clock):
    token = jwt.encode({"sub": "u-alice", "role": "user", "iat": int(clock.now)}, SECRET, algorithm="HS256")
    assert tokens.verify(token) is None


def test_alg_none_is_rejected(tokens, clock):
    token = jwt.encode(
        {"sub": "u-alice", "role": "admin", "iat": int(clock.now), "exp": int(clock.now) + 60},
        key=None,
        algorithm="none",
    )
    assert tokens.verify(token) is None


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        TokenService(secret="")
