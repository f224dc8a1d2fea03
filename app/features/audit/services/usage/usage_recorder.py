from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.models.audit import Audit
from app.features.audit.schemas.audit import AuditReport, CapturedImage, Identity
from app.features.audit.services.quota import quota_ledger
from app.platform.logger import get_logger

logger = get_logger(__name__)


async def record(
    db: AsyncSession,
    identity: Identity,
    report: AuditReport,
    framework: str,
    mode: str,
    target_url: Optional[str],
    images: List[CapturedImage],
) -> Tuple[Optional[str], bool]:
    """
    Persist a finished report, then count it against the identity's quota.

    The usage increment only happens after the report row is committed. Any
    storage failure is logged and swallowed so the caller still gets its
    report. A failed save yields no id; a failed increment keeps the id but
    reports the usage as uncounted.

    Returns:
        (audit id or None if persistence failed, whether usage was counted)
    """
    audit = Audit(
        user_id=identity.user_id or None,
        ui_title=report.ui_title[:255],
        image_url=images[0].public_url if images else None,
        framework=framework,
        mode=mode,
        target_url=target_url,
        score=report.score,
        analysis=report.model_dump(mode="json"),
        ip_address=identity.ip_address,
    )

    try:
        db.add(audit)
        await db.commit()
        await db.refresh(audit)
    except Exception as e:
        logger.error(f"DB save failed for audit (user_id={identity.user_id}, ip={identity.ip_address}): {e}")
        await db.rollback()
        return None, False

    audit_id = audit.id
    logger.info(f"Saved audit {audit_id} (user_id={identity.user_id}, score={report.score})")

    try:
        await quota_ledger.record_success(db, identity)
    except Exception as e:
        logger.error(f"Usage increment failed for user {identity.user_id} (audit {audit_id}): {e}")
        await db.rollback()
        return audit_id, False

    return audit_id, True
