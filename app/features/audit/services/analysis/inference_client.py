from typing import Optional

import httpx
import openai
from openai import AsyncOpenAI

from app.features.audit.exceptions import ConfigurationError, ContractError, InferenceError
from app.features.audit.schemas.audit import CapturedImage
from app.features.audit.services.analysis.prompts import SYSTEM_PROMPT
from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


def classify_inference_error(exc: Exception) -> InferenceError:
    """
    Map an upstream failure to a MODEL_ERROR with a user-facing message.

    Rate limits keep their 429 and oversized payloads their 413 so the caller
    can tell "wait" from "send less"; everything else is a 502.
    """
    reason = str(exc) or type(exc).__name__
    upstream_status = getattr(exc, "status_code", None)
    lowered = reason.lower()

    if upstream_status == 413 or "too large" in lowered or "payload" in lowered:
        return InferenceError(
            "The analysis payload is too large. Try scanning fewer pages.",
            status_code=413,
            reason=reason,
        )
    if upstream_status == 429 or isinstance(exc, openai.RateLimitError):
        return InferenceError(
            "AI quota exceeded. Please wait and try again.",
            status_code=429,
            reason=reason,
        )
    return InferenceError("Model inference failed", status_code=502, reason=reason)


class InferenceClient:
    """
    Vision inference over an OpenAI-compatible chat completions API.

    One call per image and no automatic retries: a failed call fails the
    whole audit.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model or settings.GROQ_MODEL
        if client is not None:
            self._client = client
            return

        api_key = api_key or settings.GROQ_API_KEY
        if not api_key:
            raise ConfigurationError()
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or settings.GROQ_BASE_URL,
            timeout=settings.INFERENCE_TIMEOUT_SECONDS,
            max_retries=0,
        )

    async def complete(self, prompt: str, image: CapturedImage, max_tokens: int) -> str:
        """
        Raises:
            InferenceError: MODEL_ERROR, classified by upstream status
            ContractError: INVALID_RESPONSE when the API returns no choices
        """
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image.as_data_url()}},
                        ],
                    },
                ],
                temperature=settings.INFERENCE_TEMPERATURE,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except (openai.APIError, httpx.HTTPError) as e:
            logger.error(f"Inference API error: {e}")
            raise classify_inference_error(e) from e

        if not completion.choices:
            raise ContractError(reason="Model returned no choices")
        return completion.choices[0].message.content or ""
