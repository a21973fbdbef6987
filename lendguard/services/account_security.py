"""
Account security state machine.

States per identity:
  ACTIVE           failed_attempts in [0, max)
  LOCKED(until)    locked=True, locked_until set

Transitions (all inside one unit of work, identity held exclusively):
  ACTIVE + bad password       → failed_attempts += 1; at max → LOCKED(now + lockout)
  ACTIVE + good password      → failed_attempts = 0, last_login = now
  LOCKED + now <  until       → AccountLocked(until); password not checked, counter untouched
  LOCKED + now >= until       → ACTIVE with failed_attempts = 0, then the attempt is processed

Every transition stages its audit entry in the same unit of work.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Optional

import structlog

from lendguard.core.clock import Clock, utcnow
from lendguard.core.config import Settings
from lendguard.core.errors import (
    AccountLocked,
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    TokenInvalid,
    ValidationError,
)
from lendguard.core.metrics import ACCOUNT_LOCKOUTS, LOGIN_ATTEMPTS
from lendguard.core.outcome import Outcome
from lendguard.core.security import BCRYPT_MAX_BYTES, PasswordHasher, TokenIssuer
from lendguard.repositories.base import Store
from lendguard.schemas.audit import (
    ACCOUNT_LOCKED,
    ACCOUNT_UNLOCKED,
    PASSWORD_CHANGE,
    AuditAction,
    RiskLevel,
)
from lendguard.schemas.identity import (
    Identity,
    IdentityPublic,
    LoginResponse,
    RegisterRequest,
    Role,
    TokenClaims,
)
from lendguard.services.audit_ledger import AuditLedger, RequestContext, build_entry

logger = structlog.get_logger()

UNKNOWN_ACTOR = "unknown"
SYSTEM_ACTOR = "system"
# Verified against on unknown emails so they cost one bcrypt check like known ones
TIMING_PASSWORD = "lendguard-timing-equaliser"


class AccountSecurity:
    def __init__(
        self,
        store: Store,
        ledger: AuditLedger,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        settings: Settings,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._ledger = ledger
        self._hasher = hasher
        self._issuer = issuer
        self._settings = settings
        self._clock = clock
        self._timing_hash: Optional[str] = None

    @property
    def lockout(self) -> timedelta:
        return timedelta(minutes=self._settings.lockout_minutes)

    async def _equaliser_hash(self) -> str:
        if self._timing_hash is None:
            self._timing_hash = await asyncio.to_thread(self._hasher.hash, TIMING_PASSWORD)
        return self._timing_hash

    # ═══════════════════════════════════════════════════════════════
    # Login
    # ═══════════════════════════════════════════════════════════════

    async def login(self, email: str, password: str, ctx: RequestContext) -> Outcome[LoginResponse]:
        async with self._store.unit_of_work() as uow:
            identity = await uow.identities.lock_by_email(email)
            now = self._clock()

            if identity is None:
                await asyncio.to_thread(self._hasher.verify, password, await self._equaliser_hash())
                await self._ledger.record(uow, build_entry(
                    ctx,
                    actor_id=UNKNOWN_ACTOR,
                    actor_email=email,
                    action=AuditAction.FAILED_LOGIN,
                    entity_type="Identity",
                    entity_id=UNKNOWN_ACTOR,
                    risk_level=RiskLevel.MEDIUM,
                    changes={"reason": "unknown_email"},
                ))
                await uow.commit()
                LOGIN_ATTEMPTS.labels("unknown_identity").inc()
                logger.info("login_failed", reason="unknown_email")
                return Outcome.failure(InvalidCredentials())

            # ── LOCKED ──
            if identity.locked:
                until = identity.locked_until
                if until is not None and now < until:
                    await self._ledger.record(uow, self._identity_entry(
                        ctx, identity, AuditAction.FAILED_LOGIN, RiskLevel.HIGH,
                        changes={"reason": "account_locked", "locked_until": until.isoformat()},
                    ))
                    await uow.commit()
                    LOGIN_ATTEMPTS.labels("locked").inc()
                    logger.info("login_rejected_locked", identity_id=identity.id, locked_until=until.isoformat())
                    return Outcome.failure(AccountLocked(until))

                # Lock expired: back to ACTIVE before looking at the password
                previous = {
                    "locked": True,
                    "locked_until": until.isoformat() if until else None,
                    "failed_attempts": identity.failed_attempts,
                }
                identity = identity.model_copy(update={"locked": False, "locked_until": None, "failed_attempts": 0})
                await uow.identities.save(identity)
                await self._ledger.record(uow, self._identity_entry(
                    ctx, identity, AuditAction.UPDATE, RiskLevel.LOW,
                    flags=[ACCOUNT_UNLOCKED],
                    changes={"locked": False, "failed_attempts": 0},
                    previous_values=previous,
                ))
                logger.info("account_auto_unlocked", identity_id=identity.id)

            # ── ACTIVE ──
            verified = await asyncio.to_thread(self._hasher.verify, password, identity.password_hash)

            if not verified:
                attempts = identity.failed_attempts + 1
                if attempts >= self._settings.max_failed_logins:
                    until = now + self.lockout
                    identity = identity.model_copy(
                        update={"failed_attempts": attempts, "locked": True, "locked_until": until}
                    )
                    await uow.identities.save(identity)
                    await self._ledger.record(uow, self._identity_entry(
                        ctx, identity, AuditAction.FAILED_LOGIN, RiskLevel.HIGH,
                        flags=[ACCOUNT_LOCKED],
                        changes={"failed_attempts": attempts, "locked_until": until.isoformat()},
                    ))
                    await uow.commit()
                    LOGIN_ATTEMPTS.labels("invalid_credentials").inc()
                    ACCOUNT_LOCKOUTS.inc()
                    logger.warning("account_locked", identity_id=identity.id, locked_until=until.isoformat())
                    return Outcome.failure(AccountLocked(until))

                identity = identity.model_copy(update={"failed_attempts": attempts})
                await uow.identities.save(identity)
                await self._ledger.record(uow, self._identity_entry(
                    ctx, identity, AuditAction.FAILED_LOGIN, RiskLevel.MEDIUM,
                    changes={"failed_attempts": attempts},
                ))
                await uow.commit()
                LOGIN_ATTEMPTS.labels("invalid_credentials").inc()
                logger.info("login_failed", identity_id=identity.id, failed_attempts=attempts)
                return Outcome.failure(InvalidCredentials())

            identity = identity.model_copy(update={"failed_attempts": 0, "last_login": now})
            await uow.identities.save(identity)
            await self._ledger.record(uow, self._identity_entry(
                ctx, identity, AuditAction.LOGIN, RiskLevel.LOW,
            ))
            await uow.commit()

        LOGIN_ATTEMPTS.labels("success").inc()
        logger.info("login_succeeded", identity_id=identity.id)
        token, expires_at = self._issuer.mint(identity)
        return Outcome.success(LoginResponse(token=token, expires_at=expires_at, identity=identity.public()))

    # ═══════════════════════════════════════════════════════════════
    # Password / registration / logout
    # ═══════════════════════════════════════════════════════════════

    def _check_new_password(self, password: str, field: str) -> Optional[ValidationError]:
        if len(password) < self._settings.min_password_length:
            return ValidationError(field, f"must be at least {self._settings.min_password_length} characters")
        if len(password.encode("utf-8")) > BCRYPT_MAX_BYTES:
            return ValidationError(field, f"must be at most {BCRYPT_MAX_BYTES} bytes")
        return None

    async def change_password(
        self,
        claims: TokenClaims,
        current_password: str,
        new_password: str,
        ctx: RequestContext,
    ) -> Outcome[None]:
        invalid = self._check_new_password(new_password, "new_password")
        if invalid:
            return Outcome.failure(invalid)

        async with self._store.unit_of_work() as uow:
            identity = await uow.identities.lock_by_email(claims.email)
            if identity is None or identity.id != claims.id:
                return Outcome.failure(TokenInvalid())

            verified = await asyncio.to_thread(self._hasher.verify, current_password, identity.password_hash)
            if not verified:
                logger.info("password_change_rejected", identity_id=identity.id)
                return Outcome.failure(InvalidCredentials("Current password is incorrect"))

            new_hash = await asyncio.to_thread(self._hasher.hash, new_password)
            await uow.identities.save(identity.model_copy(update={"password_hash": new_hash}))
            await self._ledger.record(uow, self._identity_entry(
                ctx, identity, AuditAction.UPDATE, RiskLevel.MEDIUM,
                flags=[PASSWORD_CHANGE],
                changes={"field": "password"},
            ))
            await uow.commit()

        logger.info("password_changed", identity_id=identity.id)
        return Outcome.success(None)

    async def register(self, request: RegisterRequest, actor: Identity, ctx: RequestContext) -> IdentityPublic:
        if not request.name.strip():
            raise ValidationError("name", "required")
        invalid = self._check_new_password(request.password, "password")
        if invalid:
            raise invalid

        password_hash = await asyncio.to_thread(self._hasher.hash, request.password)
        async with self._store.unit_of_work() as uow:
            if await uow.identities.get_by_email(request.email):
                raise ConflictError("Email already registered", field="email")

            identity = Identity(
                id=str(uuid.uuid4()),
                email=request.email,
                name=request.name.strip(),
                password_hash=password_hash,
                role=request.role,
                created_at=self._clock(),
            )
            await uow.identities.add(identity)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.CREATE,
                entity_type="Identity",
                entity_id=identity.id,
                risk_level=RiskLevel.MEDIUM,
                changes={"email": identity.email, "name": identity.name, "role": identity.role.value},
            ))
            await uow.commit()

        logger.info("identity_registered", identity_id=identity.id, role=identity.role.value, by=actor.id)
        return identity.public()

    # ═══════════════════════════════════════════════════════════════
    # Administrative recovery
    # ═══════════════════════════════════════════════════════════════

    async def unlock(self, identity_id: str, actor: Identity, ctx: RequestContext) -> IdentityPublic:
        """Lift a lockout before it expires. Only a currently locked identity can be unlocked."""
        async with self._store.unit_of_work() as uow:
            identity = await uow.identities.lock(identity_id)
            if identity is None:
                raise NotFoundError("Identity", identity_id)
            if not identity.locked:
                raise ValidationError("identity", "account is not locked")

            previous = {
                "locked": True,
                "locked_until": identity.locked_until.isoformat() if identity.locked_until else None,
                "failed_attempts": identity.failed_attempts,
            }
            identity = identity.model_copy(update={"locked": False, "locked_until": None, "failed_attempts": 0})
            await uow.identities.save(identity)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.UPDATE,
                entity_type="Identity",
                entity_id=identity.id,
                risk_level=RiskLevel.HIGH,
                flags=[ACCOUNT_UNLOCKED],
                changes={"locked": False, "failed_attempts": 0, "unlocked_by": "admin"},
                previous_values=previous,
            ))
            await uow.commit()

        logger.warning("account_unlocked_by_admin", identity_id=identity.id, by=actor.id)
        return identity.public()

    async def reset_password(
        self,
        identity_id: str,
        new_password: str,
        actor: Identity,
        ctx: RequestContext,
    ) -> IdentityPublic:
        """Set a new password without knowing the current one. Lockout state is left as is."""
        invalid = self._check_new_password(new_password, "new_password")
        if invalid:
            raise invalid

        new_hash = await asyncio.to_thread(self._hasher.hash, new_password)
        async with self._store.unit_of_work() as uow:
            identity = await uow.identities.lock(identity_id)
            if identity is None:
                raise NotFoundError("Identity", identity_id)

            identity = identity.model_copy(update={"password_hash": new_hash})
            await uow.identities.save(identity)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.UPDATE,
                entity_type="Identity",
                entity_id=identity.id,
                risk_level=RiskLevel.HIGH,
                flags=[PASSWORD_CHANGE],
                changes={"field": "password", "reset_by": "admin"},
            ))
            await uow.commit()

        logger.warning("password_reset_by_admin", identity_id=identity.id, by=actor.id)
        return identity.public()

    async def logout(self, identity: Identity, ctx: RequestContext) -> None:
        """Records the logout. The token itself stays valid until it expires."""
        await self._ledger.append(self._identity_entry(ctx, identity, AuditAction.LOGOUT, RiskLevel.LOW))

    async def ensure_identity(self, email: str, name: str, password: str, role: Role) -> bool:
        """Create an identity at startup unless the email is taken. Returns True when created."""
        password_hash = await asyncio.to_thread(self._hasher.hash, password)
        async with self._store.unit_of_work() as uow:
            if await uow.identities.get_by_email(email):
                return False
            identity = Identity(
                id=str(uuid.uuid4()),
                email=email,
                name=name,
                password_hash=password_hash,
                role=role,
                created_at=self._clock(),
            )
            await uow.identities.add(identity)
            await self._ledger.record(uow, build_entry(
                RequestContext(ip_address="localhost", user_agent=SYSTEM_ACTOR),
                actor_id=SYSTEM_ACTOR,
                actor_email=SYSTEM_ACTOR,
                action=AuditAction.CREATE,
                entity_type="Identity",
                entity_id=identity.id,
                risk_level=RiskLevel.MEDIUM,
                changes={"email": email, "role": role.value},
            ))
            await uow.commit()
        logger.info("identity_bootstrapped", email=email, role=role.value)
        return True

    def _identity_entry(self, ctx, identity: Identity, action, risk_level, flags=(), changes=None, previous_values=None):
        return build_entry(
            ctx,
            actor_id=identity.id,
            actor_email=identity.email,
            action=action,
            entity_type="Identity",
            entity_id=identity.id,
            risk_level=risk_level,
            flags=flags,
            changes=changes,
            previous_values=previous_values,
        )
