"""
Repository contracts.

Services never talk to a global store. They receive a `Store`, open a unit
of work, and everything done through that unit (state change plus its
audit entry) becomes visible together on `commit()` or not at all.
Leaving the `async with` block without committing discards the work.
"""
from __future__ import annotations

from typing import Literal, Optional, Protocol

from lendguard.schemas.audit import AuditLogEntry, AuditQuery
from lendguard.schemas.identity import Identity
from lendguard.schemas.risk_config import RiskConfiguration
from lendguard.schemas.risk_response import ReviewOutcome, RiskAssessment

CountField = Literal["action", "risk_level"]


class IdentityRepository(Protocol):
    async def get(self, identity_id: str) -> Optional[Identity]: ...

    async def get_by_email(self, email: str) -> Optional[Identity]: ...

    async def lock_by_email(self, email: str) -> Optional[Identity]:
        """
        Load an identity and hold exclusive access to it until the unit of
        work ends. Concurrent callers for the same identity wait here.
        """
        ...

    async def lock(self, identity_id: str) -> Optional[Identity]:
        """Same as `lock_by_email`, keyed by id."""
        ...

    async def add(self, identity: Identity) -> None: ...

    async def save(self, identity: Identity) -> None: ...


class ConfigurationRepository(Protocol):
    async def get(self, version: str) -> Optional[RiskConfiguration]: ...

    async def active(self) -> Optional[RiskConfiguration]: ...

    async def history(self) -> list[RiskConfiguration]:
        """All versions, newest first."""
        ...

    async def next_sequence(self) -> int: ...

    async def add(self, config: RiskConfiguration) -> None: ...

    async def activate(self, version: str) -> None:
        """Point the active slot at `version`. Replaces the previous pointer in one write."""
        ...


class AssessmentRepository(Protocol):
    async def get(self, assessment_id: str) -> Optional[RiskAssessment]: ...

    async def for_application(self, application_id: str) -> list[RiskAssessment]: ...

    async def lock(self, assessment_id: str) -> Optional[RiskAssessment]:
        """Load an assessment and hold exclusive access to it until the unit of work ends."""
        ...

    async def add(self, assessment: RiskAssessment) -> None: ...

    async def attach_review(self, assessment_id: str, review: ReviewOutcome) -> bool:
        """
        Write the review outcome only if none is recorded yet. Returns False
        when another reviewer got there first. Nothing else on an assessment
        changes after creation.
        """
        ...


class AuditRepository(Protocol):
    async def append(self, entry: AuditLogEntry) -> None: ...

    async def query(
        self,
        query: AuditQuery,
        offset: int = 0,
        limit: Optional[int] = None,
        ascending: bool = False,
    ) -> tuple[list[AuditLogEntry], int]:
        """Matching entries ordered by (timestamp, id), plus the unpaginated total."""
        ...

    async def count_by(self, query: AuditQuery, field: CountField) -> dict[str, int]: ...


class UnitOfWork(Protocol):
    identities: IdentityRepository
    configurations: ConfigurationRepository
    assessments: AssessmentRepository
    audit: AuditRepository

    async def commit(self) -> None: ...

    async def __aenter__(self) -> "UnitOfWork": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...


class Store(Protocol):
    def unit_of_work(self) -> UnitOfWork: ...

    async def close(self) -> None: ...
