"""
In-process store for development and tests.

Writes are staged on the unit of work and applied to the shared maps in one
synchronous step on commit, so no other task can observe half of a unit.
Row-level exclusion uses one asyncio.Lock per identity or assessment, held
from `lock`/`lock_by_email` until the unit of work exits.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from typing import Optional

from lendguard.repositories.base import CountField
from lendguard.schemas.audit import AuditLogEntry, AuditQuery
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_config import RiskConfiguration
from lendguard.schemas.risk_response import ReviewOutcome, RiskAssessment


class MemoryStore:
    def __init__(self):
        self.identities: dict[str, Identity] = {}
        self.email_index: dict[str, str] = {}
        self.configurations: dict[str, RiskConfiguration] = {}
        self.active_version: Optional[str] = None
        self.assessments: dict[str, RiskAssessment] = {}
        self.audit_log: list[AuditLogEntry] = []
        self.audit_ids: set[str] = set()
        self._row_locks: dict[tuple[str, str], asyncio.Lock] = {}

    def unit_of_work(self) -> "MemoryUnitOfWork":
        return MemoryUnitOfWork(self)

    def row_lock(self, kind: str, key: str) -> asyncio.Lock:
        return self._row_locks.setdefault((kind, key), asyncio.Lock())

    async def close(self) -> None:
        return None


class MemoryIdentityRepository:
    def __init__(self, uow: "MemoryUnitOfWork"):
        self._uow = uow
        self._store = uow.store
        self.staged: dict[str, Identity] = {}

    async def get(self, identity_id: str) -> Optional[Identity]:
        if identity_id in self.staged:
            return self.staged[identity_id].model_copy()
        found = self._store.identities.get(identity_id)
        return found.model_copy() if found else None

    async def get_by_email(self, email: str) -> Optional[Identity]:
        for staged in self.staged.values():
            if staged.email == email:
                return staged.model_copy()
        identity_id = self._store.email_index.get(email)
        return await self.get(identity_id) if identity_id else None

    async def lock_by_email(self, email: str) -> Optional[Identity]:
        identity_id = self._store.email_index.get(email)
        if identity_id is None:
            return None
        return await self.lock(identity_id)

    async def lock(self, identity_id: str) -> Optional[Identity]:
        await self._uow.acquire("identity", identity_id)
        # Re-read after acquiring: the previous holder may have committed
        return await self.get(identity_id)

    async def add(self, identity: Identity) -> None:
        self.staged[identity.id] = identity.model_copy()

    async def save(self, identity: Identity) -> None:
        self.staged[identity.id] = identity.model_copy()


class MemoryConfigurationRepository:
    def __init__(self, store: MemoryStore):
        self._store = store
        self.staged: dict[str, RiskConfiguration] = {}
        self.staged_active: Optional[str] = None

    def _active_version(self) -> Optional[str]:
        return self.staged_active or self._store.active_version

    def _with_flag(self, config: RiskConfiguration) -> RiskConfiguration:
        return config.model_copy(update={"is_active": config.version == self._active_version()})

    def _all(self) -> dict[str, RiskConfiguration]:
        return {**self._store.configurations, **self.staged}

    async def get(self, version: str) -> Optional[RiskConfiguration]:
        found = self._all().get(version)
        return self._with_flag(found) if found else None

    async def active(self) -> Optional[RiskConfiguration]:
        version = self._active_version()
        return await self.get(version) if version else None

    async def history(self) -> list[RiskConfiguration]:
        configs = sorted(self._all().values(), key=lambda c: c.sequence, reverse=True)
        return [self._with_flag(c) for c in configs]

    async def next_sequence(self) -> int:
        return max((c.sequence for c in self._all().values()), default=0) + 1

    async def add(self, config: RiskConfiguration) -> None:
        self.staged[config.version] = config.model_copy(update={"is_active": False})

    async def activate(self, version: str) -> None:
        self.staged_active = version


class MemoryAssessmentRepository:
    def __init__(self, uow: "MemoryUnitOfWork"):
        self._uow = uow
        self._store = uow.store
        self.staged: dict[str, RiskAssessment] = {}

    async def get(self, assessment_id: str) -> Optional[RiskAssessment]:
        found = self.staged.get(assessment_id) or self._store.assessments.get(assessment_id)
        return found.model_copy(deep=True) if found else None

    async def for_application(self, application_id: str) -> list[RiskAssessment]:
        merged = {**self._store.assessments, **self.staged}
        matching = [a for a in merged.values() if a.application_id == application_id]
        matching.sort(key=lambda a: (a.evaluated_at, a.id), reverse=True)
        return [a.model_copy(deep=True) for a in matching]

    async def lock(self, assessment_id: str) -> Optional[RiskAssessment]:
        await self._uow.acquire("assessment", assessment_id)
        return await self.get(assessment_id)

    async def add(self, assessment: RiskAssessment) -> None:
        self.staged[assessment.id] = assessment.model_copy(deep=True)

    async def attach_review(self, assessment_id: str, review: ReviewOutcome) -> bool:
        current = await self.get(assessment_id)
        if current is None or current.review is not None:
            return False
        self.staged[assessment_id] = current.model_copy(update={"review": review.model_copy()})
        return True


class MemoryAuditRepository:
    def __init__(self, store: MemoryStore):
        self._store = store
        self.staged: list[AuditLogEntry] = []

    async def append(self, entry: AuditLogEntry) -> None:
        self.staged.append(entry.model_copy(deep=True))

    async def query(
        self,
        query: AuditQuery,
        offset: int = 0,
        limit: Optional[int] = None,
        ascending: bool = False,
    ) -> tuple[list[AuditLogEntry], int]:
        matching = [e for e in self._store.audit_log + self.staged if query.matches(e)]
        matching.sort(key=lambda e: (e.timestamp, e.id), reverse=not ascending)
        total = len(matching)
        end = None if limit is None else offset + limit
        return [e.model_copy(deep=True) for e in matching[offset:end]], total

    async def count_by(self, query: AuditQuery, field: CountField) -> dict[str, int]:
        counts: Counter[str] = Counter()
        for entry in self._store.audit_log + self.staged:
            if query.matches(entry):
                value = getattr(entry, field)
                counts[value.value if value is not None else "UNKNOWN"] += 1
        return dict(counts)


class MemoryUnitOfWork:
    def __init__(self, store: MemoryStore):
        self.store = store
        self.held_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self.identities = MemoryIdentityRepository(self)
        self.configurations = MemoryConfigurationRepository(store)
        self.assessments = MemoryAssessmentRepository(self)
        self.audit = MemoryAuditRepository(store)
        self.committed = False

    async def __aenter__(self) -> "MemoryUnitOfWork":
        return self

    async def acquire(self, kind: str, key: str) -> None:
        if (kind, key) in self.held_locks:
            return
        lock = self.store.row_lock(kind, key)
        await lock.acquire()
        self.held_locks[(kind, key)] = lock

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for lock in self.held_locks.values():
            lock.release()
        self.held_locks.clear()

    async def commit(self) -> None:
        if self.committed:
            raise RuntimeError("unit of work already committed")
        # Check first, then apply: nothing below awaits
        emails = {}
        for identity in self.identities.staged.values():
            owner = self.store.email_index.get(identity.email)
            if owner is not None and owner != identity.id:
                raise ValueError(f"email already registered: {identity.email}")
            emails[identity.email] = identity.id
        for assessment in self.assessments.staged.values():
            stored = self.store.assessments.get(assessment.id)
            if stored is not None and stored.review is not None:
                raise ValueError(f"assessment already reviewed: {assessment.id}")
        for entry in self.audit.staged:
            if entry.id in self.store.audit_ids:
                raise ValueError(f"audit entry already recorded: {entry.id}")

        self.store.identities.update(self.identities.staged)
        self.store.email_index.update(emails)
        self.store.configurations.update(self.configurations.staged)
        if self.configurations.staged_active is not None:
            self.store.active_version = self.configurations.staged_active
        self.store.assessments.update(self.assessments.staged)
        self.store.audit_log.extend(self.audit.staged)
        self.store.audit_ids.update(e.id for e in self.audit.staged)
        self.committed = True
