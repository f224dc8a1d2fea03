"""
Tests for the per-identity quota ledger.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.features.audit.exceptions import AdmissionError, QuotaLookupError
from app.features.audit.models import Audit, UserUsage
from app.features.audit.schemas.audit import Identity
from app.features.audit.services.quota import quota_ledger

USER = Identity(user_id="user-123", ip_address="10.0.0.1")
GUEST = Identity(user_id=None, ip_address="203.0.113.7")

PERIOD = "2026-10"
PREVIOUS_PERIOD = "2026-09"


def _guest_audit(ip_address: str) -> Audit:
    return Audit(
        user_id=None,
        ui_title="Landing Page",
        framework="nielsen",
        mode="upload",
        score=70,
        analysis={"score": 70},
        ip_address=ip_address,
    )


class TestPlanPolicy:
    def test_current_period_key_is_calendar_month(self):
        now = datetime(2026, 1, 31, 23, 59, tzinfo=timezone.utc)
        assert quota_ledger.current_period_key(now) == "2026-01"

    def test_unknown_plan_falls_back_to_free(self):
        assert quota_ledger.plan_policy("platinum").name == "free"
        assert quota_ledger.plan_policy(None).name == "free"

    def test_plan_names_are_case_insensitive(self):
        assert quota_ledger.plan_policy(" Pro ").name == "pro"

    def test_unlimited_plans_have_no_audit_limit(self):
        for plan in ("pro", "design", "enterprise", "agency"):
            assert quota_ledger.plan_policy(plan).audit_limit is None

    def test_token_limits_by_tier(self):
        assert quota_ledger.plan_policy("free").token_limit == 2000
        assert quota_ledger.plan_policy("plus").token_limit == 4000
        assert quota_ledger.plan_policy("agency").token_limit == 8000


class TestAuthenticatedQuota:
    async def test_new_user_is_admitted_on_free_plan(self, db_session):
        decision = await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        assert decision.allow is True
        assert decision.used == 0
        assert decision.plan == "free"
        assert decision.limit == 3
        assert decision.token_limit == 2000
        assert decision.period_key == PERIOD

    async def test_first_admission_creates_usage_row(self, db_session):
        await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        row = (await db_session.execute(select(UserUsage))).scalar_one()
        assert row.user_id == USER.user_id
        assert row.audits_used == 0
        assert row.period_key == PERIOD

    async def test_record_success_increments(self, db_session):
        await quota_ledger.record_success(db_session, USER, period_key=PERIOD)
        await quota_ledger.record_success(db_session, USER, period_key=PERIOD)

        decision = await quota_ledger.evaluate(db_session, USER, period_key=PERIOD)
        assert decision.used == 2
        assert decision.allow is True

    async def test_limit_reached_rejects_with_plan_limit(self, db_session):
        for _ in range(3):
            await quota_ledger.record_success(db_session, USER, period_key=PERIOD)

        with pytest.raises(AdmissionError) as exc_info:
            await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        error = exc_info.value
        assert error.error_code == "PLAN_LIMIT"
        assert error.status_code == 402
        assert error.message == "Free plan limit reached. Upgrade to continue."
        assert error.limits["audits_used"] == 3
        assert error.limits["limit"] == 3
        assert error.limits["plan"] == "free"

    async def test_new_period_resets_counter(self, db_session):
        for _ in range(3):
            await quota_ledger.record_success(db_session, USER, period_key=PREVIOUS_PERIOD)

        decision = await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        assert decision.allow is True
        assert decision.used == 0
        row = (await db_session.execute(select(UserUsage))).scalar_one()
        assert row.period_key == PERIOD

    async def test_increment_in_new_period_restarts_at_one(self, db_session):
        await quota_ledger.record_success(db_session, USER, period_key=PREVIOUS_PERIOD)
        await quota_ledger.record_success(db_session, USER, period_key=PREVIOUS_PERIOD)

        await quota_ledger.record_success(db_session, USER, period_key=PERIOD)

        decision = await quota_ledger.evaluate(db_session, USER, period_key=PERIOD)
        assert decision.used == 1

    async def test_paid_plan_limit_names_the_plan(self, db_session):
        db_session.add(UserUsage(user_id=USER.user_id, plan="lite", audits_used=10, period_key=PERIOD))
        await db_session.commit()

        with pytest.raises(AdmissionError) as exc_info:
            await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        assert exc_info.value.message == "Lite plan limit reached. Upgrade to continue."
        assert exc_info.value.limits["plan"] == "lite"
        assert exc_info.value.limits["limit"] == 10

    async def test_unlimited_plan_is_always_admitted(self, db_session):
        db_session.add(UserUsage(user_id=USER.user_id, plan="pro", audits_used=500, period_key=PERIOD))
        await db_session.commit()

        decision = await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        assert decision.allow is True
        assert decision.limit is None
        assert decision.plan == "pro"
        assert decision.token_limit == 4000

    async def test_admission_does_not_change_plan(self, db_session):
        db_session.add(UserUsage(user_id=USER.user_id, plan="plus", audits_used=4, period_key=PERIOD))
        await db_session.commit()

        decision = await quota_ledger.admit(db_session, USER, period_key=PERIOD)

        assert decision.plan == "plus"
        assert decision.used == 4
        assert decision.limit == 30


class TestGuestQuota:
    async def test_guest_with_no_audits_is_admitted(self, db_session):
        decision = await quota_ledger.admit(db_session, GUEST)

        assert decision.allow is True
        assert decision.plan == "guest"
        assert decision.used == 0
        assert decision.limit == 1

    async def test_guest_usage_counts_stored_audits_by_address(self, db_session):
        db_session.add(_guest_audit(GUEST.ip_address))
        await db_session.commit()

        with pytest.raises(AdmissionError) as exc_info:
            await quota_ledger.admit(db_session, GUEST)

        assert exc_info.value.message == "Guest limit reached. Sign up for more."
        assert exc_info.value.limits["audits_used"] == 1

    async def test_other_addresses_are_independent(self, db_session):
        db_session.add(_guest_audit("198.51.100.1"))
        await db_session.commit()

        decision = await quota_ledger.admit(db_session, GUEST)
        assert decision.allow is True

    async def test_record_success_is_noop_for_guests(self, db_session):
        await quota_ledger.record_success(db_session, GUEST, period_key=PERIOD)

        rows = (await db_session.execute(select(UserUsage))).scalars().all()
        assert rows == []


class TestQuotaLookupFailure:
    async def test_storage_failure_raises_server_error(self):
        db = MagicMock()
        db.bind.dialect.name = "sqlite"
        db.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("database is down")))
        db.rollback = AsyncMock()
        db.commit = AsyncMock()

        with pytest.raises(QuotaLookupError) as exc_info:
            await quota_ledger.admit(db, USER, period_key=PERIOD)

        assert exc_info.value.error_code == "SERVER_ERROR"
        assert exc_info.value.status_code == 500
        db.rollback.assert_awaited_once()

    async def test_guest_lookup_failure_is_not_admitted(self):
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("timeout")))
        db.rollback = AsyncMock()

        with pytest.raises(QuotaLookupError):
            await quota_ledger.admit(db, GUEST)


class TestUsageSnapshot:
    async def test_snapshot_reports_current_limits(self, db_session):
        await quota_ledger.record_success(db_session, USER)

        limits = await quota_ledger.usage_snapshot(db_session, USER)

        assert limits.plan == "free"
        assert limits.audits_used == 1
        assert limits.limit == 3
        assert limits.period_key == quota_ledger.current_period_key()
