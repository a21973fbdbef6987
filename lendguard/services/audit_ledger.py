"""
Compliance audit ledger.

Append-only. There is no update or delete path. The ledger never derives
compliance flags itself; whoever records an entry passes the flags.

Two write paths:
  record(uow, entry)        inside the caller's unit of work, so the entry
                              commits or rolls back with the state change.
  append_best_effort(entry) own unit of work, failures logged and dropped.
                              Read-access events only.
"""
from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

import structlog

from lendguard.core.clock import Clock, utcnow
from lendguard.core.config import Settings
from lendguard.core.errors import LedgerWriteError, ValidationError
from lendguard.core.metrics import LEDGER_WRITE_FAILURES
from lendguard.repositories.base import Store, UnitOfWork
from lendguard.schemas.audit import (
    CSV_COLUMNS,
    DATA_EXPORT,
    DATA_MODIFICATION_ACTIONS,
    AuditAction,
    AuditExport,
    AuditLogEntry,
    AuditPage,
    AuditQuery,
    AuditSummary,
    ComplianceReport,
    ComplianceSummary,
    Pagination,
    RiskLevel,
    UserActivity,
)

logger = structlog.get_logger()

REQUIRED_FIELDS = (
    "actor_id",
    "actor_email",
    "action",
    "entity_type",
    "entity_id",
    "ip_address",
    "user_agent",
    "risk_level",
)


# Column widths of audit_logs; client-supplied values are cut to fit
MAX_IP_LENGTH = 64
MAX_SESSION_ID_LENGTH = 100
MAX_USER_AGENT_LENGTH = 512


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from, as recorded on every audit entry."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    session_id: str = "none"

    def __post_init__(self):
        object.__setattr__(self, "ip_address", self.ip_address[:MAX_IP_LENGTH])
        object.__setattr__(self, "user_agent", self.user_agent[:MAX_USER_AGENT_LENGTH])
        object.__setattr__(self, "session_id", self.session_id[:MAX_SESSION_ID_LENGTH])


def build_entry(
    ctx: RequestContext,
    *,
    actor_id: str,
    actor_email: str,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    risk_level: RiskLevel,
    flags: Iterable[str] = (),
    changes: Optional[dict[str, Any]] = None,
    previous_values: Optional[dict[str, Any]] = None,
    application_id: Optional[str] = None,
) -> AuditLogEntry:
    return AuditLogEntry(
        actor_id=actor_id,
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes=changes,
        previous_values=previous_values,
        ip_address=ctx.ip_address,
        user_agent=ctx.user_agent,
        session_id=ctx.session_id,
        risk_level=risk_level,
        compliance_flags=list(flags),
        application_id=application_id,
    )


class AuditLedger:
    def __init__(self, store: Store, settings: Settings, clock: Clock = utcnow):
        self._store = store
        self._settings = settings
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════════════

    def _prepare(self, entry: AuditLogEntry) -> AuditLogEntry:
        for field in REQUIRED_FIELDS:
            if getattr(entry, field) in (None, ""):
                raise ValidationError(field, "required on every audit entry")
        return entry.model_copy(
            update={
                "timestamp": entry.timestamp or self._clock(),
                # set semantics, first occurrence order kept
                "compliance_flags": list(dict.fromkeys(entry.compliance_flags)),
            }
        )

    async def record(self, uow: UnitOfWork, entry: AuditLogEntry) -> AuditLogEntry:
        """Stage an entry in the caller's unit of work. Visible only once it commits."""
        prepared = self._prepare(entry)
        await uow.audit.append(prepared)
        return prepared

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Write one entry in its own unit of work. A failed commit is raised."""
        prepared = self._prepare(entry)
        try:
            async with self._store.unit_of_work() as uow:
                await uow.audit.append(prepared)
                await uow.commit()
        except Exception as e:
            LEDGER_WRITE_FAILURES.labels("critical").inc()
            logger.exception("audit_write_failed", entry_id=prepared.id, action=prepared.action.value)
            raise LedgerWriteError("Audit entry could not be recorded") from e
        return prepared

    async def append_best_effort(self, entry: AuditLogEntry) -> Optional[AuditLogEntry]:
        """Like `append`, but a failure is logged and None returned instead of raising."""
        try:
            return await self.append(entry)
        except (LedgerWriteError, ValidationError) as e:
            LEDGER_WRITE_FAILURES.labels("best_effort").inc()
            logger.warning("audit_best_effort_dropped", action=entry.action, error=str(e))
            return None

    # ═══════════════════════════════════════════════════════════════
    # Reads
    # ═══════════════════════════════════════════════════════════════

    def _check_range(self, start: Optional[datetime], end: Optional[datetime]) -> None:
        if start and end and start > end:
            raise ValidationError("startDate", "must not be after endDate")

    async def query(self, query: AuditQuery, page: int = 1, limit: Optional[int] = None) -> AuditPage:
        if limit is None:
            limit = self._settings.audit_default_page_size
        if page < 1:
            raise ValidationError("page", "must be at least 1")
        if not 1 <= limit <= self._settings.audit_max_page_size:
            raise ValidationError("limit", f"must be between 1 and {self._settings.audit_max_page_size}")
        self._check_range(query.start, query.end)

        async with self._store.unit_of_work() as uow:
            logs, total = await uow.audit.query(query, offset=(page - 1) * limit, limit=limit)

        return AuditPage(
            logs=logs,
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit) if total else 0,
            ),
        )

    async def summary(self, days: int = 30) -> AuditSummary:
        if days < 1:
            raise ValidationError("days", "must be at least 1")
        end = self._clock()
        start = end - timedelta(days=days)
        window = AuditQuery(start=start, end=end)

        async with self._store.unit_of_work() as uow:
            by_action = await uow.audit.count_by(window, "action")
            by_risk_level = await uow.audit.count_by(window, "risk_level")
            recent_high, _ = await uow.audit.query(
                window.model_copy(update={"risk_level": RiskLevel.HIGH}),
                limit=self._settings.audit_recent_high_risk,
            )
            _, flagged = await uow.audit.query(window.model_copy(update={"flagged_only": True}), limit=0)

        return AuditSummary(
            period_start=start,
            period_end=end,
            total_logs=sum(by_action.values()),
            by_action=by_action,
            by_risk_level=by_risk_level,
            recent_high_risk_actions=recent_high,
            compliance_flagged=flagged,
        )

    async def compliance_report(self, start: datetime, end: datetime) -> ComplianceReport:
        self._check_range(start, end)
        window = AuditQuery(start=start, end=end)

        async with self._store.unit_of_work() as uow:
            by_action = await uow.audit.count_by(window, "action")
            flagged, flagged_total = await uow.audit.query(
                window.model_copy(update={"flagged_only": True}),
                limit=self._settings.audit_export_limit,
            )

        def count(*actions: AuditAction) -> int:
            return sum(by_action.get(a.value, 0) for a in actions)

        return ComplianceReport(
            report_start=start,
            report_end=end,
            summary=ComplianceSummary(
                total_actions=sum(by_action.values()),
                failed_logins=count(AuditAction.FAILED_LOGIN),
                data_modifications=count(*DATA_MODIFICATION_ACTIONS),
                config_changes=count(AuditAction.CONFIG_CHANGE),
                overrides=count(AuditAction.OVERRIDE),
                deletions=count(AuditAction.DELETE),
                compliance_flagged_actions_count=flagged_total,
            ),
            compliance_flagged_actions=flagged,
        )

    async def entity_trail(self, entity_type: str, entity_id: str) -> list[AuditLogEntry]:
        """Full history of one entity, oldest first."""
        async with self._store.unit_of_work() as uow:
            logs, _ = await uow.audit.query(
                AuditQuery(entity_type=entity_type, entity_id=entity_id),
                ascending=True,
            )
        return logs

    async def user_activity(self, user_id: str, days: int = 30) -> UserActivity:
        if days < 1:
            raise ValidationError("days", "must be at least 1")
        window = AuditQuery(actor_id=user_id, start=self._clock() - timedelta(days=days))

        async with self._store.unit_of_work() as uow:
            action_counts = await uow.audit.count_by(window, "action")
            recent, total = await uow.audit.query(window, limit=self._settings.audit_default_page_size)

        return UserActivity(
            user_id=user_id,
            days=days,
            total_actions=total,
            action_counts=action_counts,
            recent_activity=recent,
        )

    # ═══════════════════════════════════════════════════════════════
    # Export
    # ═══════════════════════════════════════════════════════════════

    async def export(
        self,
        query: AuditQuery,
        fmt: str,
        actor_id: str,
        actor_email: str,
        ctx: RequestContext,
    ) -> AuditExport | str:
        """
        JSON returns an AuditExport; CSV returns the document text with the
        fixed column order. The export itself is recorded before returning.
        """
        if fmt not in ("json", "csv"):
            raise ValidationError("format", "must be json or csv")
        self._check_range(query.start, query.end)

        async with self._store.unit_of_work() as uow:
            logs, _ = await uow.audit.query(query, limit=self._settings.audit_export_limit)
            await self.record(
                uow,
                build_entry(
                    ctx,
                    actor_id=actor_id,
                    actor_email=actor_email,
                    action=AuditAction.EXPORT,
                    entity_type="AuditLog",
                    entity_id="export",
                    risk_level=RiskLevel.MEDIUM,
                    flags=[DATA_EXPORT],
                    changes={
                        "format": fmt,
                        "record_count": len(logs),
                        "start": query.start.isoformat() if query.start else None,
                        "end": query.end.isoformat() if query.end else None,
                    },
                ),
            )
            await uow.commit()

        logger.info("audit_exported", actor_id=actor_id, format=fmt, records=len(logs))

        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer, lineterminator="\n")
            writer.writerow(CSV_COLUMNS)
            for entry in logs:
                writer.writerow(entry.csv_row())
            return buffer.getvalue()

        return AuditExport(exported_at=self._clock(), record_count=len(logs), logs=logs)
