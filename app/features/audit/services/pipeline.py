import asyncio
from typing import Callable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.exceptions import PipelineTimeoutError
from app.features.audit.schemas.audit import (
    AcquisitionPlan,
    AuditMode,
    AuditReport,
    AuditRequest,
    AuditResult,
    CapturedImage,
    Framework,
    Identity,
)
from app.features.audit.services.acquisition.crawler import Crawler
from app.features.audit.services.acquisition.input_resolver import InputResolver
from app.features.audit.services.acquisition.screenshot import ScreenshotAcquirer
from app.features.audit.services.analysis import normalizer
from app.features.audit.services.analysis.dispatcher import AnalysisDispatcher
from app.features.audit.services.quota import quota_ledger
from app.features.audit.services.storage import blob_storage
from app.features.audit.services.usage import usage_recorder
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


class AuditPipeline:
    """
    One audit request, end to end:

    admit → resolve input → acquire images → one inference call per image →
    normalize and aggregate → persist and count usage.

    Acquisition and analysis run under a single wall-clock budget; on timeout
    nothing is persisted and no usage is counted.
    """

    def __init__(
        self,
        acquirer: Optional[ScreenshotAcquirer] = None,
        crawler: Optional[Crawler] = None,
        dispatcher_factory: Callable[[], AnalysisDispatcher] = AnalysisDispatcher,
        timeout_seconds: Optional[float] = None,
    ):
        self.acquirer = acquirer or ScreenshotAcquirer()
        self.crawler = crawler or Crawler(acquirer=self.acquirer)
        self.dispatcher_factory = dispatcher_factory
        self.timeout_seconds = timeout_seconds or settings.AUDIT_REQUEST_TIMEOUT_SECONDS

    async def run(self, db: AsyncSession, identity: Identity, request: AuditRequest) -> AuditResult:
        decision = await quota_ledger.admit(db, identity)

        framework = InputResolver.resolve_framework(request.framework)
        plan = InputResolver.resolve(request)

        # Fails with MISSING_GROQ before any capture work is spent
        dispatcher = self.dispatcher_factory()

        logger.info(
            f"Audit admitted: mode={plan.mode.value}, framework={framework.value}, "
            f"user_id={identity.user_id}, plan={decision.plan}, used={decision.used}"
        )

        try:
            report, images = await asyncio.wait_for(
                self._acquire_and_analyze(plan, framework, dispatcher, decision.token_limit),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(f"Audit timed out after {self.timeout_seconds}s (mode={plan.mode.value})")
            raise PipelineTimeoutError(reason=f"Exceeded {self.timeout_seconds}s request budget")

        audit_id, counted = await usage_recorder.record(
            db,
            identity,
            report,
            framework=framework.value,
            mode=plan.mode.value,
            target_url=plan.target_url,
            images=images,
        )

        # Usage only moves when the increment was committed
        used = decision.used + 1 if counted else decision.used
        return AuditResult(
            report=report,
            audit_id=audit_id,
            limits=decision.limits(used=used),
            image_url=images[0].public_url,
            target_url=plan.target_url,
        )

    async def _acquire_and_analyze(
        self,
        plan: AcquisitionPlan,
        framework: Framework,
        dispatcher: AnalysisDispatcher,
        token_limit: int,
    ) -> Tuple[AuditReport, List[CapturedImage]]:
        images = await self.acquire(plan)
        raw_outputs = await dispatcher.analyze_all(images, framework, plan.mode, token_limit)
        report = normalizer.normalize(raw_outputs, [image.public_url for image in images])
        return report, images

    async def acquire(self, plan: AcquisitionPlan) -> List[CapturedImage]:
        """Ordered, non-empty image set for the plan."""
        if plan.mode == AuditMode.crawler:
            return await self.crawler.crawl(plan.target_url)

        if plan.mode in (AuditMode.url, AuditMode.accessibility):
            return [await self.acquirer.capture_or_fail(plan.target_url)]

        return [
            CapturedImage(
                data=upload.data,
                mime_type=upload.content_type,
                public_url=blob_storage.save_image(upload.data, upload.content_type, upload.filename),
            )
            for upload in plan.uploads
        ]


def get_audit_pipeline() -> AuditPipeline:
    return AuditPipeline()
