"""
Normalization of raw model output into AuditReport.

Model replies are loosely shaped: fields go missing, severities drift, and
older prompt versions nested findings under `images[*].audit`. Everything is
coerced here; nothing past this module reads raw model output.
"""
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.features.audit.exceptions import ContractError
from app.features.audit.schemas.audit import (
    SEVERITIES,
    UX_DIMENSIONS,
    AuditReport,
    Coordinates,
    Finding,
    ImageReport,
    UXMetrics,
)

DEFAULT_TITLE = "Issue Detected"
DEFAULT_ISSUE = "No description provided"
DEFAULT_SOLUTION = "No solution provided"
DEFAULT_CATEGORY = "General"
DEFAULT_SEVERITY = "medium"
DEFAULT_UI_TITLE = "Untitled Scan"

MAX_HIGHLIGHTS = 3
TITLE_FROM_ISSUE_LENGTH = 50

FINDING_KEYS = ("audit", "findings", "issues")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_severity(value: Any) -> str:
    severity = (_text(value) or "").lower()
    return severity if severity in SEVERITIES else DEFAULT_SEVERITY


def parse_coordinates(value: Any) -> Optional[Coordinates]:
    """Accepts "x,y", [x, y] or {"x": .., "y": ..}; clamps into 0-100."""
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    elif isinstance(value, dict):
        parts = [value.get("x"), value.get("y")]
    else:
        return None

    if len(parts) != 2:
        return None
    x, y = _number(parts[0]), _number(parts[1])
    if x is None or y is None:
        return None
    return Coordinates(x=_clamp(x, 0, 100), y=_clamp(y, 0, 100))


def normalize_finding(item: Any) -> Finding:
    """Total: any input yields a Finding with every field filled."""
    if isinstance(item, str):
        item = {"issue": item}
    elif not isinstance(item, dict):
        item = {}

    issue = _text(item.get("issue")) or _text(item.get("critique")) or _text(item.get("description"))
    solution = _text(item.get("solution")) or _text(item.get("fix")) or _text(item.get("recommendation"))

    title = _text(item.get("title"))
    if title is None:
        title = f"{issue[:TITLE_FROM_ISSUE_LENGTH]}..." if issue else DEFAULT_TITLE

    return Finding(
        title=title,
        issue=issue or DEFAULT_ISSUE,
        solution=solution or DEFAULT_SOLUTION,
        severity=normalize_severity(item.get("severity")),
        category=_text(item.get("category")) or DEFAULT_CATEGORY,
        coordinates=parse_coordinates(item.get("coordinates")),
    )


def _raw_findings(raw: Dict[str, Any]) -> List[Any]:
    for key in FINDING_KEYS:
        value = raw.get(key)
        if isinstance(value, list):
            return value

    # Legacy combined shape: {"images": [{"audit": [...]}, ...]}
    nested = raw.get("images")
    if isinstance(nested, list):
        findings = []
        for group in nested:
            if isinstance(group, dict) and isinstance(group.get("audit"), list):
                findings.extend(group["audit"])
        return findings

    return []


def _score(raw: Dict[str, Any]) -> int:
    score = _number(raw.get("score"))
    if score is None:
        raise ContractError(reason="Model output is missing a numeric 'score'")
    return round_half_up(_clamp(score, 0, 100))


def normalize_metrics(value: Any) -> UXMetrics:
    value = value if isinstance(value, dict) else {}
    metrics = {}
    for dimension in UX_DIMENSIONS:
        number = _number(value.get(dimension))
        metrics[dimension] = round_half_up(_clamp(number, 0, 10)) if number is not None else 0
    return UXMetrics(**metrics)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [text for text in (_text(v) for v in value) if text]


def _ui_title(raw: Dict[str, Any]) -> str:
    title = _text(raw.get("ui_title")) or _text(raw.get("summary_title"))
    if title:
        return title
    summary = raw.get("summary")
    if isinstance(summary, dict) and _text(summary.get("ui_title")):
        return _text(summary.get("ui_title"))
    nested = raw.get("images")
    if isinstance(nested, list) and nested and isinstance(nested[0], dict):
        return _text(nested[0].get("ui_title")) or DEFAULT_UI_TITLE
    return DEFAULT_UI_TITLE


def normalize_image(raw: Dict[str, Any], index: int, image_url: Optional[str] = None) -> ImageReport:
    """
    Raises:
        ContractError: INVALID_RESPONSE when the output has no usable score
    """
    if not isinstance(raw, dict):
        raise ContractError(reason=f"Model output for image {index} is not a JSON object")

    return ImageReport(
        index=index,
        ui_title=_ui_title(raw),
        summary_text=_text(raw.get("summary_text")) or "",
        score=_score(raw),
        findings=[normalize_finding(item) for item in _raw_findings(raw)],
        ux_metrics=normalize_metrics(raw.get("ux_metrics")),
        key_strengths=_string_list(raw.get("key_strengths")),
        key_weaknesses=_string_list(raw.get("key_weaknesses")),
        image_url=image_url,
    )


def dedupe_and_cap(lists: Iterable[List[str]], cap: int = MAX_HIGHLIGHTS) -> List[str]:
    seen = {}
    for items in lists:
        for item in items:
            seen.setdefault(item, None)
    return list(seen)[:cap]


def aggregate(images: Sequence[ImageReport]) -> AuditReport:
    """Merge per-image reports; means are rounded half-up."""
    if not images:
        raise ValueError("Cannot aggregate an empty image report list")

    count = len(images)
    metrics = UXMetrics(**{
        dimension: round_half_up(sum(getattr(img.ux_metrics, dimension) for img in images) / count)
        for dimension in UX_DIMENSIONS
    })

    return AuditReport(
        score=round_half_up(sum(img.score for img in images) / count),
        ui_title=images[0].ui_title,
        summary_text=images[0].summary_text,
        images=list(images),
        key_strengths=dedupe_and_cap(img.key_strengths for img in images),
        key_weaknesses=dedupe_and_cap(img.key_weaknesses for img in images),
        ux_metrics=metrics,
        audit=[finding for img in images for finding in img.findings],
    )


def normalize(
    raw_outputs: Sequence[Dict[str, Any]],
    image_urls: Optional[Sequence[Optional[str]]] = None,
) -> AuditReport:
    """Pure: raw per-image outputs (in image order) to one AuditReport."""
    image_urls = list(image_urls or [])
    reports = [
        normalize_image(raw, index, image_urls[index] if index < len(image_urls) else None)
        for index, raw in enumerate(raw_outputs)
    ]
    return aggregate(reports)
