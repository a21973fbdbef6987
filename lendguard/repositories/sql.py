"""
SQLAlchemy async store (asyncpg in production, aiosqlite in tests).

One AsyncSession per unit of work. `lock_by_email` issues
SELECT ... FOR UPDATE so concurrent logins for one identity queue on the
row lock. Reviews are attached with an UPDATE conditional on no review being
present, so of two racing reviewers exactly one row count comes back as 1
even where the dialect ignores FOR UPDATE. The active configuration is a single-row pointer table; switching
versions is one UPDATE of that row.
"""
from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from lendguard.core.clock import as_utc, utcnow
from lendguard.models.tables import (
    ActiveConfigurationRow,
    AuditLogRow,
    Base,
    IdentityRow,
    RiskAssessmentRow,
    RiskConfigurationRow,
)
from lendguard.repositories.base import CountField
from lendguard.schemas.audit import AuditAction, AuditLogEntry, AuditQuery, RiskLevel
from lendguard.schemas.identity import Identity, Role
from lendguard.schemas.risk_config import RiskConfiguration
from lendguard.schemas.risk_request import ApplicantFactors
from lendguard.schemas.risk_response import ReviewOutcome, RiskAssessment, RiskDecision

logger = structlog.get_logger()

ACTIVE_SLOT = 1


def _maybe_utc(value):
    return as_utc(value) if value is not None else None


# ═══════════════════════════════════════════════════════════════
# Row ⇄ model mapping
# ═══════════════════════════════════════════════════════════════

def _identity_from_row(row: IdentityRow) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=Role(row.role),
        failed_attempts=row.failed_attempts,
        locked=row.locked,
        locked_until=_maybe_utc(row.locked_until),
        last_login=_maybe_utc(row.last_login),
        created_at=_maybe_utc(row.created_at),
    )


def _apply_identity(row: IdentityRow, identity: Identity) -> None:
    row.email = identity.email
    row.name = identity.name
    row.password_hash = identity.password_hash
    row.role = identity.role.value
    row.failed_attempts = identity.failed_attempts
    row.locked = identity.locked
    row.locked_until = identity.locked_until
    row.last_login = identity.last_login


def _config_from_row(row: RiskConfigurationRow, active_version: Optional[str]) -> RiskConfiguration:
    return RiskConfiguration(
        version=row.version,
        sequence=row.sequence,
        name=row.name,
        description=row.description,
        factor_weights={name: weight for name, weight in row.factor_weights},
        threshold_low_risk=row.threshold_low_risk,
        threshold_medium_risk=row.threshold_medium_risk,
        threshold_high_risk=row.threshold_high_risk,
        auto_approve_threshold=row.auto_approve_threshold,
        auto_reject_threshold=row.auto_reject_threshold,
        require_human_review=row.require_human_review,
        retention_period_months=row.retention_period_months,
        is_active=row.version == active_version,
        created_at=_maybe_utc(row.created_at),
        created_by=row.created_by,
    )


def _assessment_from_row(row: RiskAssessmentRow) -> RiskAssessment:
    return RiskAssessment(
        id=row.id,
        application_id=row.application_id,
        officer_id=row.officer_id,
        inputs=ApplicantFactors.model_validate(row.inputs_json),
        decision=RiskDecision.model_validate(row.decision_json),
        evaluated_at=as_utc(row.evaluated_at),
        review=ReviewOutcome.model_validate(row.review_json) if row.review_json else None,
    )


def _entry_from_row(row: AuditLogRow) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        actor_id=row.actor_id,
        actor_email=row.actor_email,
        action=AuditAction(row.action),
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        changes=row.changes,
        previous_values=row.previous_values,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        session_id=row.session_id,
        risk_level=RiskLevel(row.risk_level),
        compliance_flags=list(row.compliance_flags or []),
        application_id=row.application_id,
        timestamp=as_utc(row.timestamp),
    )


def _audit_filters(query: AuditQuery) -> list:
    clauses = []
    if query.actor_id:
        clauses.append(AuditLogRow.actor_id == query.actor_id)
    if query.action:
        clauses.append(AuditLogRow.action == query.action.value)
    if query.actions is not None:
        clauses.append(AuditLogRow.action.in_([a.value for a in query.actions]))
    if query.entity_type:
        clauses.append(AuditLogRow.entity_type == query.entity_type)
    if query.entity_id:
        clauses.append(AuditLogRow.entity_id == query.entity_id)
    if query.application_id:
        clauses.append(AuditLogRow.application_id == query.application_id)
    if query.risk_level:
        clauses.append(AuditLogRow.risk_level == query.risk_level.value)
    if query.flagged_only:
        clauses.append(AuditLogRow.is_flagged.is_(True))
    if query.start:
        clauses.append(AuditLogRow.timestamp >= query.start)
    if query.end:
        clauses.append(AuditLogRow.timestamp <= query.end)
    return clauses


# ═══════════════════════════════════════════════════════════════
# Repositories
# ═══════════════════════════════════════════════════════════════

class SqlIdentityRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, identity_id: str) -> Optional[Identity]:
        row = await self._session.get(IdentityRow, identity_id)
        return _identity_from_row(row) if row else None

    async def get_by_email(self, email: str) -> Optional[Identity]:
        result = await self._session.execute(select(IdentityRow).where(IdentityRow.email == email))
        row = result.scalar_one_or_none()
        return _identity_from_row(row) if row else None

    async def lock_by_email(self, email: str) -> Optional[Identity]:
        stmt = (
            select(IdentityRow)
            .where(IdentityRow.email == email)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        return _identity_from_row(row) if row else None

    async def lock(self, identity_id: str) -> Optional[Identity]:
        stmt = (
            select(IdentityRow)
            .where(IdentityRow.id == identity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _identity_from_row(row) if row else None

    async def add(self, identity: Identity) -> None:
        row = IdentityRow(id=identity.id, created_at=identity.created_at or utcnow())
        _apply_identity(row, identity)
        self._session.add(row)

    async def save(self, identity: Identity) -> None:
        row = await self._session.get(IdentityRow, identity.id)
        if row is None:
            raise LookupError(f"identity {identity.id} does not exist")
        _apply_identity(row, identity)


class SqlConfigurationRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def _active_version(self) -> Optional[str]:
        pointer = await self._session.get(ActiveConfigurationRow, ACTIVE_SLOT)
        return pointer.version if pointer else None

    async def get(self, version: str) -> Optional[RiskConfiguration]:
        row = await self._session.get(RiskConfigurationRow, version)
        return _config_from_row(row, await self._active_version()) if row else None

    async def active(self) -> Optional[RiskConfiguration]:
        version = await self._active_version()
        return await self.get(version) if version else None

    async def history(self) -> list[RiskConfiguration]:
        active = await self._active_version()
        result = await self._session.execute(
            select(RiskConfigurationRow).order_by(RiskConfigurationRow.sequence.desc())
        )
        return [_config_from_row(row, active) for row in result.scalars()]

    async def next_sequence(self) -> int:
        result = await self._session.execute(select(func.max(RiskConfigurationRow.sequence)))
        return (result.scalar() or 0) + 1

    async def add(self, config: RiskConfiguration) -> None:
        self._session.add(
            RiskConfigurationRow(
                version=config.version,
                sequence=config.sequence,
                name=config.name,
                description=config.description,
                factor_weights=[[name, weight] for name, weight in config.factor_weights.items()],
                threshold_low_risk=config.threshold_low_risk,
                threshold_medium_risk=config.threshold_medium_risk,
                threshold_high_risk=config.threshold_high_risk,
                auto_approve_threshold=config.auto_approve_threshold,
                auto_reject_threshold=config.auto_reject_threshold,
                require_human_review=config.require_human_review,
                retention_period_months=config.retention_period_months,
                created_by=config.created_by,
                created_at=config.created_at or utcnow(),
            )
        )
        # Pointer rows reference the version; make sure it exists first
        await self._session.flush()

    async def activate(self, version: str) -> None:
        pointer = await self._session.get(ActiveConfigurationRow, ACTIVE_SLOT, with_for_update=True)
        if pointer is None:
            self._session.add(ActiveConfigurationRow(slot=ACTIVE_SLOT, version=version))
        else:
            pointer.version = version
            pointer.activated_at = utcnow()


class SqlAssessmentRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, assessment_id: str) -> Optional[RiskAssessment]:
        row = await self._session.get(RiskAssessmentRow, assessment_id)
        return _assessment_from_row(row) if row else None

    async def for_application(self, application_id: str) -> list[RiskAssessment]:
        result = await self._session.execute(
            select(RiskAssessmentRow)
            .where(RiskAssessmentRow.application_id == application_id)
            .order_by(RiskAssessmentRow.evaluated_at.desc(), RiskAssessmentRow.id.desc())
        )
        return [_assessment_from_row(row) for row in result.scalars()]

    async def add(self, assessment: RiskAssessment) -> None:
        decision = assessment.decision
        self._session.add(
            RiskAssessmentRow(
                id=assessment.id,
                application_id=assessment.application_id,
                officer_id=assessment.officer_id,
                score=decision.score,
                category=decision.category.value,
                verdict=decision.verdict.value,
                config_version=decision.config_version,
                inputs_json=assessment.inputs.model_dump(mode="json"),
                decision_json=decision.model_dump(mode="json"),
                review_json=assessment.review.model_dump(mode="json") if assessment.review else None,
                evaluated_at=assessment.evaluated_at,
            )
        )

    async def lock(self, assessment_id: str) -> Optional[RiskAssessment]:
        stmt = (
            select(RiskAssessmentRow)
            .where(RiskAssessmentRow.id == assessment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return _assessment_from_row(row) if row else None

    async def attach_review(self, assessment_id: str, review: ReviewOutcome) -> bool:
        # Conditional on review_json still being NULL; a second writer matches no row
        stmt = (
            update(RiskAssessmentRow)
            .where(RiskAssessmentRow.id == assessment_id, RiskAssessmentRow.review_json.is_(None))
            .values(review_json=review.model_dump(mode="json"))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class SqlAuditRepository:
    def __init__(self, session: AsyncSession):
        self._session = session

    async def append(self, entry: AuditLogEntry) -> None:
        self._session.add(
            AuditLogRow(
                id=entry.id,
                actor_id=entry.actor_id,
                actor_email=entry.actor_email,
                action=entry.action.value,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                changes=entry.changes,
                previous_values=entry.previous_values,
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                session_id=entry.session_id,
                risk_level=entry.risk_level.value,
                compliance_flags=list(entry.compliance_flags),
                is_flagged=bool(entry.compliance_flags),
                application_id=entry.application_id,
                timestamp=entry.timestamp,
            )
        )

    async def query(
        self,
        query: AuditQuery,
        offset: int = 0,
        limit: Optional[int] = None,
        ascending: bool = False,
    ) -> tuple[list[AuditLogEntry], int]:
        clauses = _audit_filters(query)
        total = (
            await self._session.execute(select(func.count()).select_from(AuditLogRow).where(*clauses))
        ).scalar_one()

        if ascending:
            order = (AuditLogRow.timestamp.asc(), AuditLogRow.id.asc())
        else:
            order = (AuditLogRow.timestamp.desc(), AuditLogRow.id.desc())
        stmt = select(AuditLogRow).where(*clauses).order_by(*order).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [_entry_from_row(row) for row in result.scalars()], total

    async def count_by(self, query: AuditQuery, field: CountField) -> dict[str, int]:
        column = getattr(AuditLogRow, field)
        result = await self._session.execute(
            select(column, func.count()).where(*_audit_filters(query)).group_by(column)
        )
        return {value: count for value, count in result.all()}


# ═══════════════════════════════════════════════════════════════
# Unit of work + store
# ═══════════════════════════════════════════════════════════════

class SqlUnitOfWork:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[AsyncSession] = None
        self._committed = False

    async def __aenter__(self) -> "SqlUnitOfWork":
        self._session = self._session_factory()
        self.identities = SqlIdentityRepository(self._session)
        self.configurations = SqlConfigurationRepository(self._session)
        self.assessments = SqlAssessmentRepository(self._session)
        self.audit = SqlAuditRepository(self._session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                await self._session.rollback()
        finally:
            await self._session.close()

    async def commit(self) -> None:
        await self._session.commit()
        self._committed = True


class SqlStore:
    def __init__(self, engine: AsyncEngine, session_factory: async_sessionmaker):
        self.engine = engine
        self._session_factory = session_factory

    def unit_of_work(self) -> SqlUnitOfWork:
        return SqlUnitOfWork(self._session_factory)

    async def create_schema(self) -> None:
        """Tests and local runs only; deployed databases are migrated with Alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("sql_schema_created", url=str(self.engine.url))

    async def close(self) -> None:
        await self.engine.dispose()
