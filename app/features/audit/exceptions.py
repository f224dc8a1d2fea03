"""
Audit pipeline error taxonomy.

Every failure that leaves the pipeline is an AuditError carrying a stable
`error_code`, the HTTP status to answer with, a user-facing message and an
optional diagnostic `reason`.
"""
from typing import Any, Dict, Optional

from fastapi import status


class AuditError(Exception):
    error_code: str = "SERVER_ERROR"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Analysis failed. Try again."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        limits: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.reason = reason
        self.limits = limits
        super().__init__(self.message)


class AdmissionError(AuditError):
    """Quota exhausted for the current period."""
    error_code = "PLAN_LIMIT"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "Plan limit reached. Upgrade to continue."


class QuotaLookupError(AuditError):
    """Usage could not be verified; admitting blind is not allowed."""
    error_code = "SERVER_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Could not verify usage limits. Try again."


class InputError(AuditError):
    error_code = "INVALID_INPUT"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input image or URL"


class AcquisitionError(AuditError):
    error_code = "SCREENSHOT_FAILED"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Failed to capture main URL"


class InferenceError(AuditError):
    error_code = "MODEL_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Model inference failed"


class ContractError(AuditError):
    error_code = "INVALID_RESPONSE"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Model returned invalid JSON"


class ConfigurationError(AuditError):
    error_code = "MISSING_GROQ"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Inference API key missing or client unavailable"


class PipelineTimeoutError(AuditError):
    error_code = "TIMEOUT"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    default_message = "Analysis took too long. Try again with fewer pages."
