"""
Error taxonomy.

Every error carries an HTTP status, a machine-readable code and a detail
payload. The API layer turns them into structured JSON responses; anything
that is not a LendGuardError is treated as an internal fault.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional


class LendGuardError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════

class AuthenticationError(LendGuardError):
    status_code = 401
    code = "AUTHENTICATION_FAILED"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(message)


class TokenInvalid(AuthenticationError):
    code = "TOKEN_INVALID"

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpired(AuthenticationError):
    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token expired"):
        super().__init__(message)


class AccountLocked(AuthenticationError):
    status_code = 403
    code = "ACCOUNT_LOCKED"

    def __init__(self, locked_until: datetime):
        super().__init__(
            f"Account is locked until {locked_until.isoformat()}",
            lockedUntil=locked_until.isoformat(),
        )
        self.locked_until = locked_until


# ═══════════════════════════════════════════════════════════════
# Authorization
# ═══════════════════════════════════════════════════════════════

class AuthorizationError(LendGuardError):
    status_code = 403
    code = "FORBIDDEN"


class InsufficientRole(AuthorizationError):
    code = "INSUFFICIENT_ROLE"

    def __init__(self, required: Iterable[str], current: str):
        required_sorted = sorted(required)
        super().__init__(
            "Insufficient permissions",
            required=required_sorted,
            current=current,
        )
        self.required = required_sorted
        self.current = current


# ═══════════════════════════════════════════════════════════════
# Request / domain
# ═══════════════════════════════════════════════════════════════

class ValidationError(LendGuardError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}", field=field, reason=reason)
        self.field = field
        self.reason = reason


class NotFoundError(LendGuardError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, key: Optional[str] = None):
        message = f"{entity} not found" if key is None else f"{entity} '{key}' not found"
        super().__init__(message, entity=entity)
        self.entity = entity


class ConflictError(LendGuardError):
    status_code = 409
    code = "CONFLICT"


# ═══════════════════════════════════════════════════════════════
# Configuration: fatal precondition for any risk evaluation
# ═══════════════════════════════════════════════════════════════

class ConfigurationError(LendGuardError):
    status_code = 503
    code = "CONFIGURATION_ERROR"


class MissingActiveConfig(ConfigurationError):
    code = "MISSING_ACTIVE_CONFIG"

    def __init__(self, message: str = "No active risk configuration found"):
        super().__init__(message)


class IncompleteWeights(ConfigurationError):
    code = "INCOMPLETE_WEIGHTS"

    def __init__(self, version: str, reason: str):
        super().__init__(f"Configuration {version} has incomplete weights: {reason}", version=version)
        self.reason = reason


# ═══════════════════════════════════════════════════════════════
# Ledger durability
# ═══════════════════════════════════════════════════════════════

class LedgerWriteError(LendGuardError):
    """The unit of work carrying a compliance-critical audit entry failed to commit."""
    status_code = 500
    code = "INTERNAL_ERROR"
