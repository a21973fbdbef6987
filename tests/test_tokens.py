"""
Token issuer and password hasher.
"""
from datetime import timedelta

import pytest

from lendguard.core.errors import TokenExpired, TokenInvalid
from lendguard.core.security import PasswordHasher, TokenIssuer
from lendguard.schemas.identity import Identity, Role

from conftest import T0, FakeClock


def _make_identity(**overrides) -> Identity:
    fields = {
        "id": "b3c1a9d2-0000-4000-8000-000000000001",
        "email": "analyst@lendguard.test",
        "name": "Risk Analyst",
        "password_hash": "unused",
        "role": Role.RISK_ANALYST,
    }
    fields.update(overrides)
    return Identity(**fields)


def _make_issuer(clock, secret="secret-a", days=7) -> TokenIssuer:
    return TokenIssuer(secret, expires_in=timedelta(days=days), clock=clock)


class TestTokenIssuer:

    def test_round_trip(self):
        clock = FakeClock()
        issuer = _make_issuer(clock)
        identity = _make_identity()

        token, expires_at = issuer.mint(identity)
        claims = issuer.verify(token).unwrap()

        assert (claims.id, claims.email, claims.role) == (identity.id, identity.email, identity.role)
        assert claims.issued_at == T0
        assert expires_at == T0 + timedelta(days=7)
        assert claims.expires_at == expires_at

    def test_different_secret_is_invalid_not_expired(self):
        clock = FakeClock()
        token, _ = _make_issuer(clock, secret="secret-a").mint(_make_identity())

        other = _make_issuer(clock, secret="secret-b")
        assert isinstance(other.verify(token).error, TokenInvalid)

        # Still TokenInvalid once the token would also have expired
        clock.advance(days=30)
        outcome = other.verify(token)
        assert isinstance(outcome.error, TokenInvalid)
        assert not isinstance(outcome.error, TokenExpired)

    def test_expired(self):
        clock = FakeClock()
        issuer = _make_issuer(clock)
        token, _ = issuer.mint(_make_identity())

        clock.advance(days=6, hours=23)
        assert issuer.verify(token).ok

        clock.advance(hours=1)
        assert isinstance(issuer.verify(token).error, TokenExpired)

    def test_configurable_validity(self):
        clock = FakeClock()
        issuer = _make_issuer(clock, days=1)
        token, expires_at = issuer.mint(_make_identity())
        assert expires_at == T0 + timedelta(days=1)
        clock.advance(days=1)
        assert isinstance(issuer.verify(token).error, TokenExpired)

    def test_garbage_token(self):
        issuer = _make_issuer(FakeClock())
        assert isinstance(issuer.verify("not.a.jwt").error, TokenInvalid)

    def test_unwrap_raises_the_error(self):
        issuer = _make_issuer(FakeClock())
        with pytest.raises(TokenInvalid):
            issuer.verify("nope").unwrap()

    def test_refresh_keeps_old_token_valid(self):
        clock = FakeClock()
        issuer = _make_issuer(clock)
        old_token, _ = issuer.mint(_make_identity())
        claims = issuer.verify(old_token).unwrap()

        clock.advance(hours=2)
        new_token, new_expiry = issuer.refresh(claims)

        assert new_expiry == T0 + timedelta(days=7, hours=2)
        assert issuer.verify(new_token).unwrap().id == claims.id
        assert issuer.verify(old_token).ok

    def test_optional_verify_never_raises(self):
        clock = FakeClock()
        issuer = _make_issuer(clock)
        token, _ = issuer.mint(_make_identity())

        assert issuer.optional_verify(token).email == "analyst@lendguard.test"
        assert issuer.optional_verify(None) is None
        assert issuer.optional_verify("") is None
        assert issuer.optional_verify("garbage") is None
        clock.advance(days=8)
        assert issuer.optional_verify(token) is None


class TestPasswordHasher:

    def test_hash_and_verify(self):
        hasher = PasswordHasher(rounds=4)
        hashed = hasher.hash("s3cret-passphrase")
        assert hashed != "s3cret-passphrase"
        assert hasher.verify("s3cret-passphrase", hashed)
        assert not hasher.verify("wrong", hashed)

    def test_overlong_password_never_verifies(self):
        hasher = PasswordHasher(rounds=4)
        hashed = hasher.hash("a" * 72)
        assert not hasher.verify("a" * 73, hashed)

    def test_malformed_hash(self):
        assert not PasswordHasher(rounds=4).verify("anything", "not-a-bcrypt-hash")
