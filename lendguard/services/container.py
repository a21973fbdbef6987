"""
Wires the store and services for one application instance.

No module-level singletons: `create_app` builds a Services bundle and
hangs it on `app.state`; tests build their own with a fresh store.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog

from lendguard.core.clock import Clock, utcnow
from lendguard.core.config import Settings
from lendguard.core.security import PasswordHasher, TokenIssuer
from lendguard.models.database import build_engine, build_session_factory
from lendguard.repositories.base import Store
from lendguard.repositories.memory import MemoryStore
from lendguard.repositories.sql import SqlStore
from lendguard.schemas.identity import Role
from lendguard.services.account_security import AccountSecurity
from lendguard.services.assessment_service import AssessmentService
from lendguard.services.audit_ledger import AuditLedger
from lendguard.services.configuration_service import ConfigurationService

logger = structlog.get_logger()


@dataclass
class Services:
    settings: Settings
    store: Store
    ledger: AuditLedger
    hasher: PasswordHasher
    tokens: TokenIssuer
    accounts: AccountSecurity
    configurations: ConfigurationService
    assessments: AssessmentService
    clock: Clock = utcnow


def build_store(settings: Settings) -> Store:
    if settings.uses_memory_store:
        return MemoryStore()
    engine = build_engine(settings)
    return SqlStore(engine, build_session_factory(engine))


def build_services(settings: Settings, store: Optional[Store] = None, clock: Clock = utcnow) -> Services:
    store = store if store is not None else build_store(settings)
    ledger = AuditLedger(store, settings, clock=clock)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    tokens = TokenIssuer(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        expires_in=timedelta(days=settings.jwt_expires_days),
        clock=clock,
    )
    configurations = ConfigurationService(store, ledger, clock=clock)
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        hasher=hasher,
        tokens=tokens,
        accounts=AccountSecurity(store, ledger, hasher, tokens, settings, clock=clock),
        configurations=configurations,
        assessments=AssessmentService(store, ledger, configurations, settings, clock=clock),
        clock=clock,
    )


async def bootstrap(services: Services) -> None:
    """Seed the default configuration and the first admin, when configured to."""
    settings = services.settings
    if settings.seed_default_configuration:
        await services.configurations.seed_default()
    if settings.bootstrap_admin_email and settings.bootstrap_admin_password:
        await services.accounts.ensure_identity(
            email=settings.bootstrap_admin_email.strip().lower(),
            name="Administrator",
            password=settings.bootstrap_admin_password,
            role=Role.ADMIN,
        )
