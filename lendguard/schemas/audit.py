"""
Audit ledger records and the query / rollup payloads built from them.

Entries are append-only. Compliance flags are supplied by whoever records
the entry; the ledger stores them as given.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FAILED_LOGIN = "FAILED_LOGIN"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    OVERRIDE = "OVERRIDE"
    EXPORT = "EXPORT"
    CONFIG_CHANGE = "CONFIG_CHANGE"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ── Compliance flags ──
ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
PASSWORD_CHANGE = "PASSWORD_CHANGE"
CONFIG_CHANGE = "CONFIG_CHANGE"
CONFIG_ACTIVATION = "CONFIG_ACTIVATION"
AUTOMATED_DECISION = "AUTOMATED_DECISION"
HUMAN_REVIEW = "HUMAN_REVIEW"
MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
DATA_EXPORT = "DATA_EXPORT"

DATA_MODIFICATION_ACTIONS = (AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE)

CSV_COLUMNS = (
    "timestamp",
    "userId",
    "userEmail",
    "action",
    "entityType",
    "entityId",
    "ipAddress",
    "riskLevel",
)


class AuditLogEntry(BaseModel):
    """
    One ledger record.

    Required fields are optional at the type level so that the ledger, not
    the constructor, decides what an acceptable entry is.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: Optional[AuditAction] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    changes: Optional[dict[str, Any]] = None
    previous_values: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: str = "none"
    risk_level: Optional[RiskLevel] = None
    compliance_flags: list[str] = []
    application_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    def csv_row(self) -> list[str]:
        return [
            self.timestamp.isoformat() if self.timestamp else "",
            self.actor_id or "",
            self.actor_email or "",
            self.action.value if self.action else "",
            self.entity_type or "",
            self.entity_id or "",
            self.ip_address or "",
            self.risk_level.value if self.risk_level else "",
        ]


class AuditQuery(BaseModel):
    actor_id: Optional[str] = None
    action: Optional[AuditAction] = None
    actions: Optional[list[AuditAction]] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    application_id: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    flagged_only: bool = False
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def matches(self, entry: AuditLogEntry) -> bool:
        if self.actor_id and entry.actor_id != self.actor_id:
            return False
        if self.action and entry.action != self.action:
            return False
        if self.actions is not None and entry.action not in self.actions:
            return False
        if self.entity_type and entry.entity_type != self.entity_type:
            return False
        if self.entity_id and entry.entity_id != self.entity_id:
            return False
        if self.application_id and entry.application_id != self.application_id:
            return False
        if self.risk_level and entry.risk_level != self.risk_level:
            return False
        if self.flagged_only and not entry.compliance_flags:
            return False
        if self.start and (entry.timestamp is None or entry.timestamp < self.start):
            return False
        if self.end and (entry.timestamp is None or entry.timestamp > self.end):
            return False
        return True


class Pagination(BaseModel):
    model_config = {"populate_by_name": True}

    total: int
    page: int
    limit: int
    total_pages: int = Field(alias="totalPages")


class AuditPage(BaseModel):
    logs: list[AuditLogEntry]
    pagination: Pagination


class AuditSummary(BaseModel):
    period_start: datetime
    period_end: datetime
    total_logs: int
    by_action: dict[str, int]
    by_risk_level: dict[str, int]
    recent_high_risk_actions: list[AuditLogEntry]
    compliance_flagged: int


class ComplianceSummary(BaseModel):
    total_actions: int
    failed_logins: int
    data_modifications: int
    config_changes: int
    overrides: int
    deletions: int
    compliance_flagged_actions_count: int


class ComplianceReport(BaseModel):
    report_start: datetime
    report_end: datetime
    summary: ComplianceSummary
    compliance_flagged_actions: list[AuditLogEntry]


class UserActivity(BaseModel):
    user_id: str
    days: int
    total_actions: int
    action_counts: dict[str, int]
    recent_activity: list[AuditLogEntry]


class AuditExport(BaseModel):
    exported_at: datetime
    record_count: int
    logs: list[AuditLogEntry]
