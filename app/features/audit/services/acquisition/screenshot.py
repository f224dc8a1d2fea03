import asyncio
from dataclasses import replace
from typing import Optional, Protocol
from urllib.parse import quote

import httpx
from selenium import webdriver
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service

from app.features.audit.exceptions import AcquisitionError
from app.features.audit.schemas.audit import CapturedImage
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.utils.retry import RetryPolicy

logger = get_logger(__name__)

SINGLE_CAPTURE_POLICY = RetryPolicy(
    max_attempts=settings.SCREENSHOT_MAX_ATTEMPTS,
    delay_seconds=settings.SCREENSHOT_RETRY_DELAY_SECONDS,
)
# Crawl captures share the request budget with inference
CRAWL_CAPTURE_POLICY = RetryPolicy(
    max_attempts=settings.CRAWL_CAPTURE_MAX_ATTEMPTS,
    delay_seconds=settings.CRAWL_CAPTURE_RETRY_DELAY_SECONDS,
)


class ScreenshotRenderer(Protocol):
    async def render(self, url: str) -> CapturedImage:
        ...


class RemoteScreenshotRenderer:
    """Renders pages through a remote screenshot service (mshots-style URL API)."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @staticmethod
    def capture_url(url: str) -> str:
        base = settings.SCREENSHOT_SERVICE_URL.rstrip("/") + "/"
        return (
            f"{base}{quote(url, safe='')}"
            f"?w={settings.SCREENSHOT_WIDTH}&h={settings.SCREENSHOT_HEIGHT}"
        )

    async def render(self, url: str) -> CapturedImage:
        service_url = self.capture_url(url)
        if self._client is not None:
            response = await self._client.get(service_url)
        else:
            async with httpx.AsyncClient(
                timeout=settings.SCREENSHOT_TIMEOUT_SECONDS,
                follow_redirects=True,
            ) as client:
                response = await client.get(service_url)

        response.raise_for_status()
        mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = "image/jpeg"
        return CapturedImage(data=response.content, mime_type=mime_type, public_url=service_url)


class SeleniumScreenshotRenderer:
    """Renders pages locally with headless Chrome."""

    @staticmethod
    def build_driver() -> webdriver.Chrome:
        chrome_options = Options()
        chrome_options.add_argument('--headless')
        chrome_options.add_argument('--no-sandbox')
        chrome_options.add_argument('--disable-dev-shm-usage')
        chrome_options.add_argument(
            f'--window-size={settings.SCREENSHOT_WIDTH},{settings.SCREENSHOT_HEIGHT}'
        )

        if settings.CHROMEDRIVER_PATH:
            driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
            return webdriver.Chrome(service=driver_service, options=chrome_options)
        return webdriver.Chrome(options=chrome_options)

    def _render_sync(self, url: str) -> bytes:
        driver = self.build_driver()
        try:
            driver.set_page_load_timeout(settings.SCREENSHOT_TIMEOUT_SECONDS)
            driver.get(url)
            return driver.get_screenshot_as_png()
        finally:
            driver.quit()

    async def render(self, url: str) -> CapturedImage:
        data = await asyncio.to_thread(self._render_sync, url)
        return CapturedImage(data=data, mime_type="image/png", public_url=None)


def get_renderer() -> ScreenshotRenderer:
    if settings.SCREENSHOT_BACKEND == "selenium":
        return SeleniumScreenshotRenderer()
    return RemoteScreenshotRenderer()


class ScreenshotAcquirer:
    """
    Turns a URL into a CapturedImage with bounded retries.

    A capture counts only if its payload is larger than the minimum size;
    smaller payloads are the service's placeholder or error images.
    """

    def __init__(
        self,
        renderer: Optional[ScreenshotRenderer] = None,
        min_bytes: Optional[int] = None,
    ):
        self.renderer = renderer or get_renderer()
        self.min_bytes = settings.SCREENSHOT_MIN_BYTES if min_bytes is None else min_bytes

    def is_valid(self, image: Optional[CapturedImage]) -> bool:
        return image is not None and len(image.data) > self.min_bytes

    async def capture(
        self,
        url: str,
        policy: RetryPolicy = SINGLE_CAPTURE_POLICY,
    ) -> Optional[CapturedImage]:
        policy = replace(policy, is_valid=self.is_valid)
        image = await policy.run(lambda: self.renderer.render(url), label=f"Screenshot {url}")
        if image is not None:
            logger.info(f"Captured {url} ({len(image.data)} bytes)")
        return image

    async def capture_or_fail(self, url: str) -> CapturedImage:
        """
        Raises:
            AcquisitionError: SCREENSHOT_FAILED after the retry budget is spent
        """
        image = await self.capture(url, SINGLE_CAPTURE_POLICY)
        if image is None:
            raise AcquisitionError(
                "Failed to capture main URL",
                error_code="SCREENSHOT_FAILED",
                reason=f"No valid screenshot of {url} after {SINGLE_CAPTURE_POLICY.max_attempts} attempts",
            )
        return image
