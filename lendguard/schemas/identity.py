"""
Identities, roles and bearer-token claims.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    ADMIN = "ADMIN"
    SENIOR_UNDERWRITER = "SENIOR_UNDERWRITER"
    UNDERWRITER = "UNDERWRITER"
    LOAN_OFFICER = "LOAN_OFFICER"
    RISK_ANALYST = "RISK_ANALYST"
    COMPLIANCE_OFFICER = "COMPLIANCE_OFFICER"
    VIEWER = "VIEWER"


class Identity(BaseModel):
    """
    A login identity with its lockout bookkeeping.

    `locked` implies `locked_until` was set in the future when the flag was
    raised. Only the account security service mutates these fields.
    """
    id: str
    email: str
    name: str
    password_hash: str
    role: Role = Role.VIEWER
    failed_attempts: int = Field(0, ge=0)
    locked: bool = False
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def public(self) -> "IdentityPublic":
        return IdentityPublic(
            id=self.id,
            email=self.email,
            name=self.name,
            role=self.role,
            last_login=self.last_login,
        )


class IdentityPublic(BaseModel):
    id: str
    email: str
    name: str
    role: Role
    last_login: Optional[datetime] = None


class TokenClaims(BaseModel):
    id: str
    email: str
    role: Role
    issued_at: datetime
    expires_at: datetime


# ── Request / response payloads ──

def _normalise_email(v: str) -> str:
    return v.strip().lower()


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return _normalise_email(v)


class LoginResponse(BaseModel):
    token: str
    expires_at: datetime
    identity: IdentityPublic


class TokenResponse(BaseModel):
    token: str
    expires_at: datetime


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class RegisterRequest(BaseModel):
    email: str
    name: str
    password: str
    role: Role = Role.VIEWER

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return _normalise_email(v)


class ResetPasswordRequest(BaseModel):
    new_password: str
