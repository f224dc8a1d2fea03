import asyncio
import json
import re
from typing import Any, Dict, List, Optional

from app.features.audit.exceptions import ContractError
from app.features.audit.schemas.audit import AuditMode, CapturedImage, Framework
from app.features.audit.services.analysis.inference_client import InferenceClient
from app.features.audit.services.analysis.prompts import build_analysis_prompt
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)

CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_model_output(text: str) -> Dict[str, Any]:
    """
    Parse a model reply into a JSON object.

    Markdown code fences are tolerated; anything that is not a JSON object
    after that is a contract violation.

    Raises:
        ContractError: INVALID_RESPONSE
    """
    cleaned = CODE_FENCE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"AI JSON parse error: {e}; raw={cleaned[:500]!r}")
        raise ContractError(reason=f"JSON parse error: {e}") from e

    if not isinstance(data, dict):
        raise ContractError(reason=f"Expected a JSON object, got {type(data).__name__}")
    return data


class AnalysisDispatcher:
    """
    Runs one inference call per image.

    Calls for different images are independent and may overlap up to the
    configured concurrency. The batch is all-or-nothing: the first failure
    cancels the remaining calls and propagates.
    """

    def __init__(self, client: Optional[InferenceClient] = None, concurrency: Optional[int] = None):
        self.client = client or InferenceClient()
        self.concurrency = concurrency or settings.INFERENCE_CONCURRENCY

    async def analyze(
        self,
        image: CapturedImage,
        framework: Framework,
        mode: AuditMode,
        max_tokens: int,
    ) -> Dict[str, Any]:
        prompt = build_analysis_prompt(framework, mode)
        text = await self.client.complete(prompt, image, max_tokens)
        return parse_model_output(text)

    async def analyze_all(
        self,
        images: List[CapturedImage],
        framework: Framework,
        mode: AuditMode,
        max_tokens: int,
    ) -> List[Dict[str, Any]]:
        semaphore = asyncio.Semaphore(max(self.concurrency, 1))

        async def _bounded(index: int, image: CapturedImage) -> Dict[str, Any]:
            async with semaphore:
                logger.info(f"Analyzing image {index + 1}/{len(images)} ({framework.value}, {mode.value})")
                return await self.analyze(image, framework, mode, max_tokens)

        tasks = [asyncio.create_task(_bounded(i, image)) for i, image in enumerate(images)]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
