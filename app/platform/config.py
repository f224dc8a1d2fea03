from math import ceil
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "UX Audit AI"
    DEBUG: bool = True

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./ux_audit.db"

    # ── JWT / Auth ──────────────────────────────
    JWT_SECRET_KEY: str = "your-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"

    # ── Inference (OpenAI-compatible vision endpoint) ──
    GROQ_API_KEY: Optional[str] = None
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GROQ_MODEL: str = "meta-llama/llama-4-scout-17b-16e-instruct"
    INFERENCE_TEMPERATURE: float = 0.7
    INFERENCE_TIMEOUT_SECONDS: float = 30.0
    INFERENCE_CONCURRENCY: int = 3

    # ── Screenshots ─────────────────────────────
    SCREENSHOT_BACKEND: Literal["mshots", "selenium"] = "mshots"
    SCREENSHOT_SERVICE_URL: str = "https://s0.wp.com/mshots/v1/"
    SCREENSHOT_WIDTH: int = 1024
    SCREENSHOT_HEIGHT: int = 768
    SCREENSHOT_MIN_BYTES: int = 6000
    SCREENSHOT_TIMEOUT_SECONDS: float = 8.0
    SCREENSHOT_MAX_ATTEMPTS: int = 5
    SCREENSHOT_RETRY_DELAY_SECONDS: float = 2.0
    CHROMEDRIVER_PATH: Optional[str] = None

    # ── Crawler ─────────────────────────────────
    CRAWLER_USER_AGENT: str = "Mozilla/5.0 (AuditBot/1.0)"
    CRAWLER_FETCH_TIMEOUT_SECONDS: float = 8.0
    CRAWL_MAX_PAGES: int = 3
    CRAWL_CAPTURE_MAX_ATTEMPTS: int = 4
    CRAWL_CAPTURE_RETRY_DELAY_SECONDS: float = 2.5

    # ── Audit request limits ────────────────────
    AUDIT_REQUEST_TIMEOUT_SECONDS: float = 90.0
    MAX_UPLOAD_FILES: int = 3
    MAX_UPLOAD_BYTES: int = 8 * 1024 * 1024

    # ── Local blob storage ──────────────────────
    UPLOAD_DIR: str = "static/uploads/audits"
    STATIC_URL_PREFIX: str = "/static/uploads/audits"

    # ── Logging ─────────────────────────────────
    LOG_DIR: str = "logs"
    LOG_FILE: str = "ux_audit.log"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = str(Path(__file__).parent.parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    def inference_seconds(self, image_count: int) -> float:
        """Worst case for analyzing `image_count` images, one timeout per concurrency wave."""
        waves = ceil(image_count / max(self.INFERENCE_CONCURRENCY, 1))
        return waves * self.INFERENCE_TIMEOUT_SECONDS

    def worst_case_seconds(self) -> Dict[str, float]:
        """Longest acquire + analyze time each audit mode can take with these settings."""
        single_capture = (
            self.SCREENSHOT_MAX_ATTEMPTS * self.SCREENSHOT_TIMEOUT_SECONDS
            + max(self.SCREENSHOT_MAX_ATTEMPTS - 1, 0) * self.SCREENSHOT_RETRY_DELAY_SECONDS
        )
        crawl_capture = (
            self.CRAWL_CAPTURE_MAX_ATTEMPTS * self.SCREENSHOT_TIMEOUT_SECONDS
            + max(self.CRAWL_CAPTURE_MAX_ATTEMPTS - 1, 0) * self.CRAWL_CAPTURE_RETRY_DELAY_SECONDS
        )
        return {
            "upload": self.inference_seconds(self.MAX_UPLOAD_FILES),
            "url": single_capture + self.inference_seconds(1),
            "crawler": (
                self.CRAWLER_FETCH_TIMEOUT_SECONDS
                + crawl_capture
                + self.inference_seconds(self.CRAWL_MAX_PAGES)
            ),
        }

    @model_validator(mode="after")
    def check_request_budget(self):
        # Capture retries and inference must finish before the request timeout fires
        for mode, seconds in self.worst_case_seconds().items():
            if seconds > self.AUDIT_REQUEST_TIMEOUT_SECONDS:
                raise ValueError(
                    f"{mode} audits can take {seconds:g}s, longer than "
                    f"AUDIT_REQUEST_TIMEOUT_SECONDS={self.AUDIT_REQUEST_TIMEOUT_SECONDS:g}"
                )
        return self


settings = Settings()
