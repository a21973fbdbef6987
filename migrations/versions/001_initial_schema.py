"""
001: Initial schema: identities, risk configurations, assessments, audit ledger

Revision ID: 001
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "identities",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(30), nullable=False),

        sa.Column("failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("locked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("failed_attempts >= 0", name="ck_identities_failed_attempts"),
    )
    op.create_index("ix_identities_email", "identities", ["email"])

    op.create_table(
        "risk_configurations",
        sa.Column("version", sa.String(20), primary_key=True),
        sa.Column("sequence", sa.Integer, nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("factor_weights", sa.JSON, nullable=False),

        sa.Column("threshold_low_risk", sa.Float, nullable=False),
        sa.Column("threshold_medium_risk", sa.Float, nullable=False),
        sa.Column("threshold_high_risk", sa.Float, nullable=False),
        sa.Column("auto_approve_threshold", sa.Float, nullable=False),
        sa.Column("auto_reject_threshold", sa.Float, nullable=False),
        sa.Column("require_human_review", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("retention_period_months", sa.Integer, nullable=False, server_default="84"),

        sa.Column("created_by", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Single-row pointer: slot is always 1, so there is exactly one active version
    op.create_table(
        "active_risk_configuration",
        sa.Column("slot", sa.Integer, primary_key=True),
        sa.Column("version", sa.String(20), sa.ForeignKey("risk_configurations.version"), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("slot = 1", name="ck_active_risk_configuration_single_row"),
    )

    op.create_table(
        "risk_assessments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("application_id", sa.String(100), nullable=False),
        sa.Column("officer_id", sa.String(36), nullable=False),

        sa.Column("score", sa.Float, nullable=False),
        sa.Column("category", sa.String(10), nullable=False),
        sa.Column("verdict", sa.String(20), nullable=False),
        sa.Column("config_version", sa.String(20), sa.ForeignKey("risk_configurations.version"), nullable=False),

        sa.Column("inputs_json", sa.JSON, nullable=False),
        sa.Column("decision_json", sa.JSON, nullable=False),
        sa.Column("review_json", sa.JSON(none_as_null=True), nullable=True),

        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_risk_assessments_application_id", "risk_assessments", ["application_id"])
    op.create_index("ix_risk_assessments_evaluated_at", "risk_assessments", ["evaluated_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), nullable=False),
        sa.Column("actor_email", sa.String(255), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("changes", sa.JSON, nullable=True),
        sa.Column("previous_values", sa.JSON, nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.Text, nullable=False),
        sa.Column("session_id", sa.String(100), nullable=False),
        sa.Column("risk_level", sa.String(10), nullable=False),
        sa.Column("compliance_flags", sa.JSON, nullable=False),
        sa.Column("is_flagged", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("application_id", sa.String(100), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])
    op.create_index("ix_audit_logs_risk_level", "audit_logs", ["risk_level"])
    op.create_index("ix_audit_logs_application_id", "audit_logs", ["application_id"])
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("risk_assessments")
    op.drop_table("active_risk_configuration")
    op.drop_table("risk_configurations")
    op.drop_table("identities")
