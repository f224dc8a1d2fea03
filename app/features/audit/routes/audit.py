from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.exceptions import AuditError
from app.features.audit.models.audit import Audit
from app.features.audit.schemas.audit import (
    AuditReport,
    AuditRequest,
    Identity,
    StoredAuditResponse,
    UploadedFile,
)
from app.features.audit.services.pipeline import AuditPipeline, get_audit_pipeline
from app.features.audit.services.quota import quota_ledger
from app.features.auth.dependencies.identity import get_identity
from app.platform.db.session import get_db
from app.platform.logger import get_logger
from app.platform.response import api_response, error_response

logger = get_logger(__name__)

router = APIRouter(prefix="/audits", tags=["audits"])

GUEST_COOKIE = "guest_audit_count"
GUEST_COOKIE_MAX_AGE = 60 * 60 * 24 * 30  # 30 days


async def _read_uploads(files: Optional[List[UploadFile]]) -> List[UploadedFile]:
    uploads = []
    for upload in files or []:
        # Browsers send an empty part when no file was picked
        if upload is None or not upload.filename:
            continue
        uploads.append(
            UploadedFile(
                filename=upload.filename,
                content_type=upload.content_type or "",
                data=await upload.read(),
            )
        )
    return uploads


@router.post("", summary="Run a UX audit")
async def create_audit(
    mode: Optional[str] = Form(None),
    framework: Optional[str] = Form(None),
    url: Optional[str] = Form(None),
    file: Optional[List[UploadFile]] = File(None),
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
    pipeline: AuditPipeline = Depends(get_audit_pipeline),
):
    """
    Audit an uploaded screenshot, a live URL, or a small crawl of a site.

    Form fields:
    - **mode**: `upload` (default), `url`, `accessibility` or `crawler`
    - **framework**: `nielsen` (default), `wcag` or `gestalt`
    - **url**: target page for the URL modes
    - **file**: one or more images for upload mode

    Errors carry a stable `error_code` in `data`: PLAN_LIMIT (402),
    NO_INPUT / INVALID_INPUT / FETCH_FAILED (400), SCREENSHOT_FAILED /
    CRAWL_FAILED / SERVER_ERROR / MISSING_GROQ (500), MODEL_ERROR (429, 413
    or 502), INVALID_RESPONSE (502), TIMEOUT (504).
    """
    try:
        request = AuditRequest(
            mode=mode,
            framework=framework,
            url=url,
            files=await _read_uploads(file),
        )
        result = await pipeline.run(db, identity, request)
    except AuditError:
        raise
    except Exception as e:
        logger.exception(f"Server error during audit: {e}")
        return error_response(
            error_code="SERVER_ERROR",
            message="Analysis failed. Try again.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            reason=str(e) or type(e).__name__,
        )

    report = result.report
    response = api_response(
        data={
            "success": True,
            "id": result.audit_id,
            "ui_title": report.ui_title,
            "score": report.score,
            "report": report,
            "audit": report.audit,
            "limits": result.limits,
            "image_url": result.image_url,
            "target_url": result.target_url,
        },
        message="Audit completed",
        status_code=status.HTTP_200_OK,
    )

    if not identity.is_authenticated:
        response.set_cookie(
            GUEST_COOKIE,
            str(result.limits.audits_used),
            max_age=GUEST_COOKIE_MAX_AGE,
            httponly=False,
            samesite="lax",
            path="/",
        )
    return response


@router.get("/usage", summary="Current audit usage and limits")
async def get_usage(
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    limits = await quota_ledger.usage_snapshot(db, identity)
    return api_response(data=limits, message="Usage retrieved")


@router.get("/{audit_id}", summary="Fetch a stored audit report")
async def get_audit(
    audit_id: str,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Audit).where(Audit.id == audit_id))
    audit = result.scalar_one_or_none()

    if audit is None or not _owns(identity, audit):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit not found")

    data = StoredAuditResponse(
        id=audit.id,
        ui_title=audit.ui_title,
        framework=audit.framework,
        mode=audit.mode,
        target_url=audit.target_url,
        image_url=audit.image_url,
        score=audit.score,
        report=AuditReport.model_validate(audit.analysis),
    )
    return api_response(data=data, message="Audit retrieved")


def _owns(identity: Identity, audit: Audit) -> bool:
    if audit.user_id:
        return identity.user_id == audit.user_id
    return not identity.is_authenticated and identity.ip_address == audit.ip_address
