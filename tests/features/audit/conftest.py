from typing import Callable, Dict, Optional, Union
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.features.audit.services.acquisition.crawler import Crawler
from app.features.audit.services.acquisition.screenshot import ScreenshotAcquirer
from app.features.audit.services.analysis.dispatcher import AnalysisDispatcher
from app.features.audit.services.pipeline import AuditPipeline
from tests.features.audit.fakes import FakeInferenceClient, FakeRenderer, html_transport


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def fake_inference():
    return FakeInferenceClient()


@pytest.fixture
async def build_pipeline():
    """Factory for an AuditPipeline wired to fakes."""
    clients = []

    def _build(
        renderer: Optional[FakeRenderer] = None,
        inference: Optional[FakeInferenceClient] = None,
        pages: Optional[Dict[str, Union[str, int]]] = None,
        timeout_seconds: Optional[float] = None,
        dispatcher_factory: Optional[Callable[[], AnalysisDispatcher]] = None,
    ) -> AuditPipeline:
        acquirer = ScreenshotAcquirer(renderer=renderer or FakeRenderer())
        http_client = httpx.AsyncClient(transport=html_transport(pages or {}))
        clients.append(http_client)
        inference = inference or FakeInferenceClient()
        return AuditPipeline(
            acquirer=acquirer,
            crawler=Crawler(acquirer=acquirer, client=http_client),
            dispatcher_factory=dispatcher_factory or (lambda: AnalysisDispatcher(client=inference)),
            timeout_seconds=timeout_seconds,
        )

    yield _build

    for http_client in clients:
        await http_client.aclose()


@pytest.fixture
def no_sleep():
    """Retry delays return immediately; the mock records the requested delays."""
    with patch("app.platform.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep
