from typing import List, Optional

from app.features.audit.exceptions import InputError
from app.features.audit.schemas.audit import (
    AcquisitionPlan,
    AuditMode,
    AuditRequest,
    Framework,
    UploadedFile,
)
from app.platform.config import settings
from app.platform.logger import get_logger
from app.platform.utils.url_validator import validate_url

logger = get_logger(__name__)

URL_MODES = (AuditMode.url, AuditMode.accessibility)


class InputResolver:
    """Classifies an audit request into an acquisition mode and validates it."""

    @staticmethod
    def resolve_framework(framework: Optional[str]) -> Framework:
        value = (framework or Framework.nielsen.value).strip().lower()
        try:
            return Framework(value)
        except ValueError:
            allowed = ", ".join(f.value for f in Framework)
            raise InputError(
                f"Unknown framework '{framework}'. Allowed frameworks: {allowed}",
                error_code="INVALID_INPUT",
            )

    @staticmethod
    def resolve(request: AuditRequest) -> AcquisitionPlan:
        """
        Decide how images are acquired for this request.

        URL modes need a URL; anything else falls back to uploaded files when
        there are any. With neither a usable URL mode nor files the request
        is rejected with NO_INPUT.

        Raises:
            InputError: NO_INPUT or INVALID_INPUT
        """
        mode = (request.mode or AuditMode.upload.value).strip().lower()
        url = (request.url or "").strip()

        if url and mode in (m.value for m in URL_MODES):
            return AcquisitionPlan(mode=AuditMode(mode), target_url=InputResolver._target_url(url))

        if url and mode == AuditMode.crawler.value:
            return AcquisitionPlan(mode=AuditMode.crawler, target_url=InputResolver._target_url(url))

        if request.files:
            uploads = InputResolver._validate_uploads(request.files)
            return AcquisitionPlan(mode=AuditMode.upload, uploads=uploads)

        logger.info(f"Rejecting audit request with no input (mode={request.mode!r})")
        raise InputError("No content to analyze", error_code="NO_INPUT")

    @staticmethod
    def _target_url(url: str) -> str:
        is_valid, normalized, error_message = validate_url(url)
        if not is_valid:
            raise InputError(f"Invalid URL: {error_message}", error_code="INVALID_INPUT")
        return normalized

    @staticmethod
    def _validate_uploads(files: List[UploadedFile]) -> List[UploadedFile]:
        if len(files) > settings.MAX_UPLOAD_FILES:
            raise InputError(
                f"Too many files. Upload at most {settings.MAX_UPLOAD_FILES} images per audit.",
                error_code="INVALID_INPUT",
            )

        for upload in files:
            if not (upload.content_type or "").lower().startswith("image/"):
                raise InputError(
                    f"'{upload.filename}' is not an image file.",
                    error_code="INVALID_INPUT",
                )
            if not upload.data:
                raise InputError(f"'{upload.filename}' is empty.", error_code="INVALID_INPUT")
            if len(upload.data) > settings.MAX_UPLOAD_BYTES:
                raise InputError(
                    f"'{upload.filename}' is too large. Maximum size is "
                    f"{settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB",
                    error_code="INVALID_INPUT",
                )

        return list(files)
