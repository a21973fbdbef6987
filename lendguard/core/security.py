"""
Password hashing and session tokens.

Tokens are HS256 JWTs carrying {sub, id, email, role, iat, exp}. They are
stateless: nothing is persisted, and a token stays valid until `exp` even
after logout or refresh.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import structlog
from jose import JWTError, jwt

from lendguard.core.clock import Clock, utcnow
from lendguard.core.errors import TokenExpired, TokenInvalid
from lendguard.core.outcome import Outcome
from lendguard.schemas.identity import Identity, Role, TokenClaims

logger = structlog.get_logger()

# bcrypt only looks at the first 72 bytes; longer secrets are refused outright
BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        secret = password.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            raise ValueError("password exceeds 72 bytes")
        return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, password: str, password_hash: str) -> bool:
        secret = password.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            return False
        try:
            return bcrypt.checkpw(secret, password_hash.encode("ascii"))
        except ValueError:
            # Malformed stored hash
            logger.warning("password_hash_malformed")
            return False


class TokenIssuer:
    """
    Mints and verifies bearer tokens.

    `verify` returns an Outcome; `optional_verify` is the only entry point
    that hides failures, for endpoints where authentication is optional.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        expires_in: timedelta = timedelta(days=7),
        clock: Clock = utcnow,
    ):
        self._secret = secret
        self._algorithm = algorithm
        self._expires_in = expires_in
        self._clock = clock

    def mint(self, identity: Identity) -> tuple[str, datetime]:
        return self._encode(identity.id, identity.email, identity.role)

    def refresh(self, claims: TokenClaims) -> tuple[str, datetime]:
        """New token for the same claims. The old token is not invalidated."""
        return self._encode(claims.id, claims.email, claims.role)

    def verify(self, token: str) -> Outcome[TokenClaims]:
        try:
            # exp is checked against the injected clock below, not jose's
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
            claims = TokenClaims(
                id=payload["id"],
                email=payload["email"],
                role=Role(payload["role"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except JWTError as e:
            logger.info("token_rejected", reason=str(e))
            return Outcome.failure(TokenInvalid())
        except (KeyError, TypeError, ValueError) as e:
            logger.info("token_rejected", reason=f"malformed claims: {e}")
            return Outcome.failure(TokenInvalid())

        if self._clock() >= claims.expires_at:
            return Outcome.failure(TokenExpired())
        return Outcome.success(claims)

    def optional_verify(self, token: Optional[str]) -> Optional[TokenClaims]:
        """Claims when the token is present and valid; None for anything else."""
        if not token:
            return None
        outcome = self.verify(token)
        return outcome.value if outcome.ok else None

    def _encode(self, identity_id: str, email: str, role: Role) -> tuple[str, datetime]:
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self._expires_in
        payload = {
            "sub": identity_id,
            "id": identity_id,
            "email": email,
            "role": role.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        return token, expires_at
