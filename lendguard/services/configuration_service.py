"""
Risk configuration versions.

Versions are created, never edited. Activation moves the single active
pointer; readers see either the old or the new version, never both or none.
"""
from __future__ import annotations

from typing import Optional

import structlog

from lendguard.core.clock import Clock, utcnow
from lendguard.core.errors import (
    ConflictError,
    IncompleteWeights,
    MissingActiveConfig,
    NotFoundError,
    ValidationError,
)
from lendguard.repositories.base import Store, UnitOfWork
from lendguard.schemas.audit import CONFIG_ACTIVATION, CONFIG_CHANGE, AuditAction, RiskLevel
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_config import RiskConfiguration, RiskConfigurationDraft
from lendguard.scoring.engine import DEFAULT_CONFIGURATION, validate_weights
from lendguard.services.audit_ledger import AuditLedger, RequestContext, build_entry

logger = structlog.get_logger()


def validate_draft(draft: RiskConfigurationDraft) -> None:
    """Raise ValidationError for a draft that could never be activated safely."""
    try:
        validate_weights(RiskConfiguration(version="draft", sequence=0, **draft.model_dump()))
    except IncompleteWeights as e:
        raise ValidationError("factor_weights", e.reason) from e

    for field in (
        "threshold_low_risk",
        "threshold_medium_risk",
        "threshold_high_risk",
        "auto_approve_threshold",
        "auto_reject_threshold",
    ):
        value = getattr(draft, field)
        if not 0 <= value <= 100:
            raise ValidationError(field, "must be between 0 and 100")

    if not draft.threshold_low_risk > draft.threshold_medium_risk > draft.threshold_high_risk:
        raise ValidationError("thresholds", "low > medium > high must hold")
    if draft.auto_reject_threshold >= draft.auto_approve_threshold:
        raise ValidationError("auto_reject_threshold", "must be below auto_approve_threshold")


class ConfigurationService:
    def __init__(self, store: Store, ledger: AuditLedger, clock: Clock = utcnow):
        self._store = store
        self._ledger = ledger
        self._clock = clock

    async def resolve(self, uow: UnitOfWork, version: Optional[str] = None) -> RiskConfiguration:
        """The pinned version if given, otherwise the active one."""
        if version is not None:
            config = await uow.configurations.get(version)
            if config is None:
                raise NotFoundError("RiskConfiguration", version)
            return config
        config = await uow.configurations.active()
        if config is None:
            raise MissingActiveConfig()
        return config

    async def active(self) -> RiskConfiguration:
        async with self._store.unit_of_work() as uow:
            return await self.resolve(uow)

    async def get(self, version: str) -> RiskConfiguration:
        async with self._store.unit_of_work() as uow:
            return await self.resolve(uow, version)

    async def history(self) -> list[RiskConfiguration]:
        async with self._store.unit_of_work() as uow:
            return await uow.configurations.history()

    async def create(self, draft: RiskConfigurationDraft, actor: Identity, ctx: RequestContext) -> RiskConfiguration:
        validate_draft(draft)

        async with self._store.unit_of_work() as uow:
            sequence = await uow.configurations.next_sequence()
            config = RiskConfiguration(
                **draft.model_dump(),
                version=f"v{sequence}.0",
                sequence=sequence,
                created_at=self._clock(),
                created_by=actor.id,
            )
            await uow.configurations.add(config)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.CREATE,
                entity_type="RiskConfiguration",
                entity_id=config.version,
                risk_level=RiskLevel.MEDIUM,
                flags=[CONFIG_CHANGE],
                changes=draft.model_dump(mode="json"),
            ))
            await uow.commit()

        logger.info("risk_configuration_created", version=config.version, by=actor.id)
        return config

    async def activate(self, version: str, actor: Identity, ctx: RequestContext) -> RiskConfiguration:
        async with self._store.unit_of_work() as uow:
            target = await self.resolve(uow, version)
            if target.is_active:
                raise ConflictError(f"Configuration {version} is already active", version=version)
            # Never activate something the engine would refuse
            validate_weights(target)

            current = await uow.configurations.active()
            await uow.configurations.activate(version)
            await self._ledger.record(uow, build_entry(
                ctx,
                actor_id=actor.id,
                actor_email=actor.email,
                action=AuditAction.CONFIG_CHANGE,
                entity_type="RiskConfiguration",
                entity_id=version,
                risk_level=RiskLevel.HIGH,
                flags=[CONFIG_ACTIVATION],
                changes={"active_version": version},
                previous_values={"active_version": current.version if current else None},
            ))
            await uow.commit()

        logger.info(
            "risk_configuration_activated",
            version=version,
            previous=current.version if current else None,
            by=actor.id,
        )
        return target.model_copy(update={"is_active": True})

    async def seed_default(self) -> bool:
        """Install and activate the default configuration on an empty store."""
        async with self._store.unit_of_work() as uow:
            if await uow.configurations.history():
                return False
            config = DEFAULT_CONFIGURATION.model_copy(update={"created_at": self._clock()})
            await uow.configurations.add(config)
            await uow.configurations.activate(config.version)
            await self._ledger.record(uow, build_entry(
                RequestContext(ip_address="localhost", user_agent="system"),
                actor_id="system",
                actor_email="system",
                action=AuditAction.CONFIG_CHANGE,
                entity_type="RiskConfiguration",
                entity_id=config.version,
                risk_level=RiskLevel.HIGH,
                flags=[CONFIG_CHANGE, CONFIG_ACTIVATION],
                changes={"active_version": config.version, "seeded": True},
            ))
            await uow.commit()
        logger.info("risk_configuration_seeded", version=config.version)
        return True
