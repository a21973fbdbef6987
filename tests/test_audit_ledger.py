"""
Audit ledger: validation, queries, rollups and export.
"""
from datetime import timedelta

import pytest

from lendguard.core.errors import LedgerWriteError, ValidationError
from lendguard.repositories.memory import MemoryAuditRepository
from lendguard.schemas.audit import (
    ACCOUNT_LOCKED,
    CONFIG_ACTIVATION,
    DATA_EXPORT,
    AuditAction,
    AuditExport,
    AuditLogEntry,
    AuditQuery,
    RiskLevel,
)
from lendguard.services.audit_ledger import (
    MAX_IP_LENGTH,
    MAX_SESSION_ID_LENGTH,
    MAX_USER_AGENT_LENGTH,
    RequestContext,
    build_entry,
)

from conftest import T0


def _make_entry(ctx, action=AuditAction.READ, risk_level=RiskLevel.LOW, **overrides):
    fields = {
        "actor_id": "u-1",
        "actor_email": "analyst@lendguard.test",
        "action": action,
        "entity_type": "RiskAssessment",
        "entity_id": "a-1",
        "risk_level": risk_level,
    }
    fields.update(overrides)
    return build_entry(ctx, **fields)


async def _seed(services, ctx, clock):
    """Six entries, one hour apart starting at T0."""
    plan = [
        (AuditAction.LOGIN, RiskLevel.LOW, ()),
        (AuditAction.FAILED_LOGIN, RiskLevel.MEDIUM, ()),
        (AuditAction.FAILED_LOGIN, RiskLevel.HIGH, (ACCOUNT_LOCKED,)),
        (AuditAction.CREATE, RiskLevel.MEDIUM, ()),
        (AuditAction.CONFIG_CHANGE, RiskLevel.HIGH, (CONFIG_ACTIVATION,)),
        (AuditAction.FAILED_LOGIN, RiskLevel.MEDIUM, ()),
    ]
    written = []
    for hour, (action, level, flags) in enumerate(plan):
        clock.now = T0 + timedelta(hours=hour)
        written.append(await services.ledger.append(_make_entry(ctx, action, level, flags=flags)))
    return written


class TestWrites:

    async def test_missing_required_field_rejected(self, services, ctx):
        entry = _make_entry(ctx).model_copy(update={"actor_email": None})
        with pytest.raises(ValidationError) as exc:
            await services.ledger.append(entry)
        assert exc.value.field == "actor_email"

    async def test_entry_without_action_rejected(self, services):
        with pytest.raises(ValidationError):
            await services.ledger.append(AuditLogEntry(actor_id="u", actor_email="e", entity_type="X", entity_id="1"))

    async def test_timestamp_stamped_and_flags_deduplicated(self, services, ctx, clock):
        written = await services.ledger.append(
            _make_entry(ctx, flags=[DATA_EXPORT, ACCOUNT_LOCKED, DATA_EXPORT])
        )
        assert written.timestamp == T0
        assert written.compliance_flags == [DATA_EXPORT, ACCOUNT_LOCKED]

    async def test_duplicate_entry_id_is_a_write_failure(self, services, ctx):
        written = await services.ledger.append(_make_entry(ctx))
        with pytest.raises(LedgerWriteError):
            await services.ledger.append(written)
        page = await services.ledger.query(AuditQuery())
        assert page.pagination.total == 1

    async def test_best_effort_swallows_failures(self, services, ctx, monkeypatch):
        async def broken_append(self, entry):
            raise RuntimeError("disk full")

        monkeypatch.setattr(MemoryAuditRepository, "append", broken_append)
        assert await services.ledger.append_best_effort(_make_entry(ctx)) is None

        with pytest.raises(LedgerWriteError):
            await services.ledger.append(_make_entry(ctx))

    async def test_oversized_request_context_is_cut_to_column_width(self, services):
        ctx = RequestContext(ip_address="9" * 300, user_agent="agent/" * 200, session_id="s" * 500)

        written = await services.ledger.append(_make_entry(ctx))

        assert len(written.ip_address) == MAX_IP_LENGTH
        assert len(written.user_agent) == MAX_USER_AGENT_LENGTH
        assert written.session_id == "s" * MAX_SESSION_ID_LENGTH


class TestQuery:

    async def test_filter_by_action_newest_first(self, services, ctx, clock):
        await _seed(services, ctx, clock)

        page = await services.ledger.query(AuditQuery(action=AuditAction.FAILED_LOGIN))

        assert page.pagination.total == 3
        stamps = [e.timestamp for e in page.logs]
        assert stamps == sorted(stamps, reverse=True)
        assert stamps[0] == T0 + timedelta(hours=5)

    async def test_date_range_is_inclusive(self, services, ctx, clock):
        await _seed(services, ctx, clock)

        page = await services.ledger.query(
            AuditQuery(start=T0 + timedelta(hours=1), end=T0 + timedelta(hours=3))
        )

        assert [e.action for e in page.logs] == [
            AuditAction.CREATE,
            AuditAction.FAILED_LOGIN,
            AuditAction.FAILED_LOGIN,
        ]

    async def test_pagination(self, services, ctx, clock):
        await _seed(services, ctx, clock)

        first = await services.ledger.query(AuditQuery(), page=1, limit=4)
        second = await services.ledger.query(AuditQuery(), page=2, limit=4)

        assert first.pagination.total == 6
        assert first.pagination.total_pages == 2
        assert len(first.logs) == 4
        assert len(second.logs) == 2
        assert {e.id for e in first.logs}.isdisjoint({e.id for e in second.logs})

    async def test_invalid_paging_and_range(self, services):
        with pytest.raises(ValidationError):
            await services.ledger.query(AuditQuery(), page=0)
        with pytest.raises(ValidationError):
            await services.ledger.query(AuditQuery(), limit=10_000)
        with pytest.raises(ValidationError):
            await services.ledger.query(AuditQuery(start=T0, end=T0 - timedelta(days=1)))

    async def test_zero_limit_rejected_not_defaulted(self, services):
        with pytest.raises(ValidationError) as exc:
            await services.ledger.query(AuditQuery(), limit=0)
        assert exc.value.field == "limit"

        page = await services.ledger.query(AuditQuery())
        assert page.pagination.limit == services.settings.audit_default_page_size

    async def test_entity_trail_oldest_first(self, services, ctx, clock):
        for hour in range(3):
            clock.now = T0 + timedelta(hours=hour)
            await services.ledger.append(_make_entry(ctx, entity_id="a-9"))
        await services.ledger.append(_make_entry(ctx, entity_id="other"))

        trail = await services.ledger.entity_trail("RiskAssessment", "a-9")

        assert [e.timestamp for e in trail] == [T0 + timedelta(hours=h) for h in range(3)]


class TestRollups:

    async def test_summary(self, services, ctx, clock):
        await _seed(services, ctx, clock)
        clock.now = T0 + timedelta(days=1)

        summary = await services.ledger.summary(days=30)

        assert summary.total_logs == 6
        assert summary.by_action["FAILED_LOGIN"] == 3
        assert summary.by_risk_level == {"LOW": 1, "MEDIUM": 3, "HIGH": 2}
        assert [e.action for e in summary.recent_high_risk_actions] == [
            AuditAction.CONFIG_CHANGE,
            AuditAction.FAILED_LOGIN,
        ]
        assert summary.compliance_flagged == 2

    async def test_summary_window_excludes_old_entries(self, services, ctx, clock):
        await _seed(services, ctx, clock)
        clock.now = T0 + timedelta(days=40)
        assert (await services.ledger.summary(days=30)).total_logs == 0

    async def test_compliance_report(self, services, ctx, clock):
        await _seed(services, ctx, clock)

        report = await services.ledger.compliance_report(T0, T0 + timedelta(days=1))

        assert report.summary.total_actions == 6
        assert report.summary.failed_logins == 3
        assert report.summary.data_modifications == 1
        assert report.summary.config_changes == 1
        assert report.summary.overrides == 0
        assert report.summary.compliance_flagged_actions_count == 2
        assert {e.action for e in report.compliance_flagged_actions} == {
            AuditAction.FAILED_LOGIN,
            AuditAction.CONFIG_CHANGE,
        }

    async def test_user_activity(self, services, ctx, clock):
        await _seed(services, ctx, clock)
        await services.ledger.append(_make_entry(ctx, actor_id="someone-else"))

        activity = await services.ledger.user_activity("u-1", days=7)

        assert activity.total_actions == 6
        assert activity.action_counts["FAILED_LOGIN"] == 3
        assert all(e.actor_id == "u-1" for e in activity.recent_activity)


class TestExport:

    async def test_csv_columns_and_rows(self, services, ctx, clock):
        await _seed(services, ctx, clock)

        text = await services.ledger.export(
            AuditQuery(action=AuditAction.FAILED_LOGIN), "csv", "auditor-1", "auditor@lendguard.test", ctx,
        )

        lines = text.strip().split("\n")
        assert lines[0] == "timestamp,userId,userEmail,action,entityType,entityId,ipAddress,riskLevel"
        assert len(lines) == 4
        assert lines[1].split(",")[3] == "FAILED_LOGIN"
        assert lines[1].split(",")[6] == "10.0.0.7"

    async def test_json_export(self, services, ctx, clock):
        await _seed(services, ctx, clock)
        result = await services.ledger.export(AuditQuery(), "json", "auditor-1", "auditor@lendguard.test", ctx)
        assert isinstance(result, AuditExport)
        assert result.record_count == 6

    async def test_export_is_itself_audited(self, services, ctx, clock):
        await _seed(services, ctx, clock)
        await services.ledger.export(AuditQuery(), "csv", "auditor-1", "auditor@lendguard.test", ctx)

        page = await services.ledger.query(AuditQuery(action=AuditAction.EXPORT))

        assert page.pagination.total == 1
        entry = page.logs[0]
        assert entry.actor_id == "auditor-1"
        assert entry.compliance_flags == [DATA_EXPORT]
        assert entry.changes["record_count"] == 6

    async def test_unknown_format(self, services, ctx):
        with pytest.raises(ValidationError):
            await services.ledger.export(AuditQuery(), "xml", "a", "a@lendguard.test", ctx)
