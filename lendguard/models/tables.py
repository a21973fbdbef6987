"""
ORM tables for the SQL store.

identities                  login identities + lockout bookkeeping
risk_configurations         immutable configuration versions
active_risk_configuration   single-row pointer to the active version
risk_assessments            one row per evaluation run
audit_logs                  append-only compliance ledger
"""
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class IdentityRow(Base):
    __tablename__ = "identities"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(30), nullable=False)

    # ── Lockout ──
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked = Column(Boolean, nullable=False, default=False)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<Identity {self.email} role={self.role} locked={self.locked}>"


class RiskConfigurationRow(Base):
    __tablename__ = "risk_configurations"

    version = Column(String(20), primary_key=True)
    sequence = Column(Integer, nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")

    # [[factor, weight], ...]; a list keeps the factor order
    factor_weights = Column(JSON, nullable=False)

    threshold_low_risk = Column(Float, nullable=False)
    threshold_medium_risk = Column(Float, nullable=False)
    threshold_high_risk = Column(Float, nullable=False)
    auto_approve_threshold = Column(Float, nullable=False)
    auto_reject_threshold = Column(Float, nullable=False)
    require_human_review = Column(Boolean, nullable=False, default=True)
    retention_period_months = Column(Integer, nullable=False, default=84)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def __repr__(self):
        return f"<RiskConfiguration {self.version}>"


class ActiveConfigurationRow(Base):
    __tablename__ = "active_risk_configuration"

    slot = Column(Integer, primary_key=True, default=1)
    version = Column(String(20), ForeignKey("risk_configurations.version"), nullable=False)
    activated_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class RiskAssessmentRow(Base):
    __tablename__ = "risk_assessments"

    id = Column(String(36), primary_key=True)
    application_id = Column(String(100), nullable=False, index=True)
    officer_id = Column(String(36), nullable=False)

    # ── Decision ──
    score = Column(Float, nullable=False)
    category = Column(String(10), nullable=False)
    verdict = Column(String(20), nullable=False)
    config_version = Column(String(20), ForeignKey("risk_configurations.version"), nullable=False)

    # ── Full payloads for replay ──
    inputs_json = Column(JSON, nullable=False)
    decision_json = Column(JSON, nullable=False)
    review_json = Column(JSON(none_as_null=True), nullable=True)

    evaluated_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<RiskAssessment {self.id} category={self.category} score={self.score}>"


class AuditLogRow(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    actor_id = Column(String(36), nullable=False, index=True)
    actor_email = Column(String(255), nullable=False)
    action = Column(String(20), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False, index=True)
    changes = Column(JSON, nullable=True)
    previous_values = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=False)
    user_agent = Column(Text, nullable=False)
    session_id = Column(String(100), nullable=False)
    risk_level = Column(String(10), nullable=False, index=True)
    compliance_flags = Column(JSON, nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=False)
    application_id = Column(String(100), nullable=True, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
