"""
Audit Schemas

Request-scoped types for the audit pipeline and the response models of the
audit API endpoints.
"""
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Request-scoped pipeline types
# ============================================================================

class AuditMode(str, Enum):
    upload = "upload"
    url = "url"
    accessibility = "accessibility"
    crawler = "crawler"


class Framework(str, Enum):
    nielsen = "nielsen"
    wcag = "wcag"
    gestalt = "gestalt"


SEVERITIES = ("critical", "high", "medium", "low")

UX_DIMENSIONS = ("clarity", "efficiency", "consistency", "aesthetics", "accessibility")


@dataclass(frozen=True)
class Identity:
    """Caller identity: an account id, or an anonymous bucket keyed by address."""
    user_id: Optional[str]
    ip_address: str = "unknown"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


@dataclass(frozen=True)
class CapturedImage:
    data: bytes
    mime_type: str
    public_url: Optional[str] = None

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content_type: str
    data: bytes


@dataclass
class AcquisitionPlan:
    """What to acquire for one request, as decided by the input resolver."""
    mode: AuditMode
    target_url: Optional[str] = None
    uploads: List[UploadedFile] = field(default_factory=list)


@dataclass
class AuditRequest:
    mode: Optional[str] = None
    framework: Optional[str] = None
    url: Optional[str] = None
    files: List[UploadedFile] = field(default_factory=list)


# ============================================================================
# Quota
# ============================================================================

class UsageLimits(BaseModel):
    plan: str
    audits_used: int
    limit: Optional[int] = None  # None means unlimited
    token_limit: int
    period_key: Optional[str] = None


class AdmissionDecision(BaseModel):
    allow: bool
    used: int
    limit: Optional[int] = None
    plan: str
    token_limit: int
    period_key: Optional[str] = None

    def limits(self, used: Optional[int] = None) -> UsageLimits:
        return UsageLimits(
            plan=self.plan,
            audits_used=self.used if used is None else used,
            limit=self.limit,
            token_limit=self.token_limit,
            period_key=self.period_key,
        )


# ============================================================================
# Report
# ============================================================================

class Coordinates(BaseModel):
    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)


class Finding(BaseModel):
    title: str
    issue: str
    solution: str
    severity: str
    category: str
    coordinates: Optional[Coordinates] = None


class UXMetrics(BaseModel):
    clarity: int = Field(default=0, ge=0, le=10)
    efficiency: int = Field(default=0, ge=0, le=10)
    consistency: int = Field(default=0, ge=0, le=10)
    aesthetics: int = Field(default=0, ge=0, le=10)
    accessibility: int = Field(default=0, ge=0, le=10)


class ImageReport(BaseModel):
    index: int
    ui_title: str
    summary_text: str = ""
    score: int = Field(ge=0, le=100)
    findings: List[Finding] = Field(default_factory=list)
    ux_metrics: UXMetrics = Field(default_factory=UXMetrics)
    key_strengths: List[str] = Field(default_factory=list)
    key_weaknesses: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class AuditReport(BaseModel):
    score: int = Field(ge=0, le=100)
    ui_title: str
    summary_text: str = ""
    images: List[ImageReport]
    key_strengths: List[str] = Field(default_factory=list)
    key_weaknesses: List[str] = Field(default_factory=list)
    ux_metrics: UXMetrics = Field(default_factory=UXMetrics)

    # Flattened findings (image order, then within-image order)
    audit: List[Finding] = Field(default_factory=list)


@dataclass
class AuditResult:
    report: AuditReport
    audit_id: Optional[str]
    limits: UsageLimits
    image_url: Optional[str] = None
    target_url: Optional[str] = None


class StoredAuditResponse(BaseModel):
    id: str
    ui_title: Optional[str] = None
    framework: str
    mode: str
    target_url: Optional[str] = None
    image_url: Optional[str] = None
    score: int
    report: AuditReport

    class Config:
        json_schema_extra = {
            "example": {
                "id": "0190b8a4-7c1e-7d2a-9f00-2b1c4d5e6f70",
                "ui_title": "Pricing Page",
                "framework": "nielsen",
                "mode": "url",
                "target_url": "https://example.com",
                "image_url": "https://s0.wp.com/mshots/v1/https%3A%2F%2Fexample.com?w=1024&h=768",
                "score": 78,
                "report": {"score": 78, "ui_title": "Pricing Page", "images": [], "audit": []},
            }
        }
