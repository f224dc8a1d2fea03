"""
Quota ledger: per-identity monthly audit limits.

Authenticated users are tracked in `user_usage`, one row per user, updated only
through atomic upserts so concurrent requests for the same user never lose an
update. Guests have no row; their usage is the number of stored guest audits
from the same network address.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import case, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.exceptions import AdmissionError, QuotaLookupError
from app.features.audit.models.audit import Audit
from app.features.audit.models.user_usage import UserUsage
from app.features.audit.schemas.audit import AdmissionDecision, Identity, UsageLimits
from app.platform.logger import get_logger

logger = get_logger(__name__)

FREE_MAX_TOKENS = 2000
PRO_MAX_TOKENS = 4000
ULTRA_MAX_TOKENS = 8000


@dataclass(frozen=True)
class PlanPolicy:
    name: str
    audit_limit: Optional[int]  # None = unlimited
    token_limit: int


PLANS: Dict[str, PlanPolicy] = {
    "free": PlanPolicy("free", 3, FREE_MAX_TOKENS),
    "lite": PlanPolicy("lite", 10, FREE_MAX_TOKENS),
    "plus": PlanPolicy("plus", 30, PRO_MAX_TOKENS),
    "pro": PlanPolicy("pro", None, PRO_MAX_TOKENS),
    "design": PlanPolicy("design", None, ULTRA_MAX_TOKENS),
    "enterprise": PlanPolicy("enterprise", None, ULTRA_MAX_TOKENS),
    "agency": PlanPolicy("agency", None, ULTRA_MAX_TOKENS),
}

DEFAULT_PLAN = "free"
GUEST_PLAN = PlanPolicy("guest", 1, FREE_MAX_TOKENS)


def current_period_key(now: Optional[datetime] = None) -> str:
    """Calendar month token, e.g. '2026-10'."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def plan_policy(plan: Optional[str]) -> PlanPolicy:
    """Resolve a stored plan name; unknown names fall back to the free tier."""
    return PLANS.get((plan or DEFAULT_PLAN).strip().lower(), PLANS[DEFAULT_PLAN])


def _insert(db: AsyncSession):
    if db.bind is not None and db.bind.dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def _upsert_current_period(db: AsyncSession, user_id: str, period_key: str):
    """Create the usage row if missing; zero the counter if its period is stale."""
    insert = _insert(db)
    stmt = insert(UserUsage).values(
        user_id=user_id,
        plan=DEFAULT_PLAN,
        audits_used=0,
        period_key=period_key,
        token_limit=PLANS[DEFAULT_PLAN].token_limit,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserUsage.user_id],
        set_={
            "audits_used": case(
                (UserUsage.period_key != period_key, 0),
                else_=UserUsage.audits_used,
            ),
            "period_key": period_key,
            "updated_at": func.now(),
        },
    ).returning(UserUsage.plan, UserUsage.audits_used, UserUsage.period_key)

    result = await db.execute(stmt)
    row = result.one()
    await db.commit()
    return row


async def _count_guest_audits(db: AsyncSession, ip_address: str) -> int:
    query = (
        select(func.count())
        .select_from(Audit)
        .where(Audit.ip_address == ip_address, Audit.user_id.is_(None))
    )
    result = await db.execute(query)
    return int(result.scalar_one() or 0)


async def evaluate(
    db: AsyncSession,
    identity: Identity,
    period_key: Optional[str] = None,
) -> AdmissionDecision:
    """
    Compute the admission decision for an identity without raising on
    PLAN_LIMIT.

    Raises:
        QuotaLookupError: storage failed, usage cannot be verified
    """
    period_key = period_key or current_period_key()

    try:
        if identity.is_authenticated:
            row = await _upsert_current_period(db, identity.user_id, period_key)
            policy = plan_policy(row.plan)
            used = row.audits_used or 0
        else:
            policy = GUEST_PLAN
            used = await _count_guest_audits(db, identity.ip_address)
    except SQLAlchemyError as e:
        logger.error(f"Usage lookup failed for {identity}: {e}")
        await db.rollback()
        raise QuotaLookupError(reason=str(e)) from e

    allow = policy.audit_limit is None or used < policy.audit_limit
    return AdmissionDecision(
        allow=allow,
        used=used,
        limit=policy.audit_limit,
        plan=policy.name,
        token_limit=policy.token_limit,
        period_key=period_key,
    )


async def admit(
    db: AsyncSession,
    identity: Identity,
    period_key: Optional[str] = None,
) -> AdmissionDecision:
    """
    Admit or reject a request before any expensive work begins.

    Raises:
        AdmissionError: PLAN_LIMIT, the identity has used its period's quota
        QuotaLookupError: storage failed, usage cannot be verified
    """
    decision = await evaluate(db, identity, period_key)

    if not decision.allow:
        logger.warning(
            f"Plan limit reached (user_id={identity.user_id}, ip={identity.ip_address}, "
            f"plan={decision.plan}, used={decision.used}, limit={decision.limit})"
        )
        message = (
            f"{decision.plan.capitalize()} plan limit reached. Upgrade to continue."
            if identity.is_authenticated
            else "Guest limit reached. Sign up for more."
        )
        raise AdmissionError(message, limits=decision.limits().model_dump())

    return decision


async def record_success(
    db: AsyncSession,
    identity: Identity,
    period_key: Optional[str] = None,
) -> None:
    """
    Count one completed audit against the identity.

    Guests need no increment: their stored audit row is the counter.
    """
    if not identity.is_authenticated:
        return

    period_key = period_key or current_period_key()
    insert = _insert(db)
    stmt = insert(UserUsage).values(
        user_id=identity.user_id,
        plan=DEFAULT_PLAN,
        audits_used=1,
        period_key=period_key,
        token_limit=PLANS[DEFAULT_PLAN].token_limit,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[UserUsage.user_id],
        set_={
            "audits_used": case(
                (UserUsage.period_key == period_key, UserUsage.audits_used + 1),
                else_=1,
            ),
            "period_key": period_key,
            "updated_at": func.now(),
        },
    )
    await db.execute(stmt)
    await db.commit()
    logger.info(f"Incremented audit usage for user {identity.user_id} ({period_key})")


async def usage_snapshot(db: AsyncSession, identity: Identity) -> UsageLimits:
    """Current limits for the caller, as shown on the account page."""
    decision = await evaluate(db, identity)
    return decision.limits()
