"""
002: Seed the default v1.0 risk configuration and make it active

Baseline weighting; later versions are created through /v1/config/risk.

Revision ID: 002
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

from lendguard.scoring.engine import DEFAULT_CONFIGURATION

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    cfg = DEFAULT_CONFIGURATION
    configurations = sa.table(
        "risk_configurations",
        sa.column("version", sa.String),
        sa.column("sequence", sa.Integer),
        sa.column("name", sa.String),
        sa.column("description", sa.Text),
        sa.column("factor_weights", sa.JSON),
        sa.column("threshold_low_risk", sa.Float),
        sa.column("threshold_medium_risk", sa.Float),
        sa.column("threshold_high_risk", sa.Float),
        sa.column("auto_approve_threshold", sa.Float),
        sa.column("auto_reject_threshold", sa.Float),
        sa.column("require_human_review", sa.Boolean),
        sa.column("retention_period_months", sa.Integer),
        sa.column("created_by", sa.String),
    )
    op.bulk_insert(configurations, [{
        "version": cfg.version,
        "sequence": cfg.sequence,
        "name": cfg.name,
        "description": cfg.description,
        "factor_weights": [[name, weight] for name, weight in cfg.factor_weights.items()],
        "threshold_low_risk": cfg.threshold_low_risk,
        "threshold_medium_risk": cfg.threshold_medium_risk,
        "threshold_high_risk": cfg.threshold_high_risk,
        "auto_approve_threshold": cfg.auto_approve_threshold,
        "auto_reject_threshold": cfg.auto_reject_threshold,
        "require_human_review": cfg.require_human_review,
        "retention_period_months": cfg.retention_period_months,
        "created_by": "system",
    }])

    pointer = sa.table(
        "active_risk_configuration",
        sa.column("slot", sa.Integer),
        sa.column("version", sa.String),
    )
    op.bulk_insert(pointer, [{"slot": 1, "version": cfg.version}])


def downgrade() -> None:
    op.execute("DELETE FROM active_risk_configuration")
    op.execute("DELETE FROM risk_configurations WHERE version = 'v1.0'")
