"""Vision adapter using the Google Cloud Vision REST API for safety tagging.

One ``images:annotate`` call per image. Errors never leave this module:
callers get ``VisionResult(success=False, error_message=...)`` and record
it as a failed analysis.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field

import httpx

from services.api.src.safesnap.core.metrics import MetricsSink

logger = logging.getLogger(__name__)

MAX_LABELS = 20
MAX_OBJECTS = 10
MAX_SAFETY_TAGS = 10
MIN_TAG_CONFIDENCE = 0.6
MAX_TEXT_CHARS = 500

_SAFETY_KEYWORDS = frozenset({
    # PPE
    "hard hat", "helmet", "safety vest", "safety glasses", "gloves", "boots",
    "harness", "safety gear", "protective equipment", "high visibility",
    # Construction and industrial
    "construction", "building", "scaffold", "ladder", "crane", "excavator",
    "machinery", "equipment", "tool", "industrial", "factory", "warehouse",
    "construction site", "work site",
    # Hazards
    "hazard", "danger", "warning", "caution", "spill", "leak", "fire",
    "electrical", "chemical", "toxic", "slippery", "wet floor", "falling",
    "sharp", "broken", "damaged", "unsafe", "risk",
    # Safety infrastructure
    "barrier", "fence", "sign", "cone", "tape", "rope", "guard rail",
    "safety barrier", "warning sign", "caution tape",
    # Workplace areas
    "workplace", "office", "floor", "ceiling", "wall", "door", "window",
    "stairs", "ramp", "platform", "walkway", "entrance", "exit",
    # Vehicles
    "vehicle", "truck", "forklift", "cart", "conveyor", "transport",
    # General safety
    "safety", "security", "protection", "emergency", "first aid",
    "evacuation", "procedure", "compliance", "regulation",
})

_MOCK_LABELS = [
    ("Construction site", 0.95),
    ("Hard hat", 0.88),
    ("Safety vest", 0.82),
    ("Industrial equipment", 0.79),
    ("Workplace", 0.76),
]
_MOCK_OBJECTS = [("Person", 0.92), ("Building", 0.85)]
_MOCK_TEXT = "SAFETY FIRST - HARD HATS REQUIRED"
_MOCK_CONFIDENCE = 0.84


@dataclass(frozen=True)
class VisionResult:
    success: bool
    safety_tags: list[str] = field(default_factory=list)
    all_labels: list[tuple[str, float]] = field(default_factory=list)
    objects: list[tuple[str, float]] = field(default_factory=list)
    text: str = ""
    confidence: float = 0.0
    error_message: str | None = None


def is_safety_relevant(description: str) -> bool:
    lower = description.lower()
    return any(kw in lower or lower in kw for kw in _SAFETY_KEYWORDS)


def filter_safety_labels(labels: list[tuple[str, float]]) -> list[str]:
    """Safety-relevant labels above the confidence floor, best first, deduplicated."""
    kept = sorted(
        (
            (desc, score) for desc, score in labels
            if score > MIN_TAG_CONFIDENCE and is_safety_relevant(desc)
        ),
        key=lambda item: item[1],
        reverse=True,
    )
    tags: list[str] = []
    for desc, _ in kept:
        if desc not in tags:
            tags.append(desc)
    return tags[:MAX_SAFETY_TAGS]


def mock_result() -> VisionResult:
    return VisionResult(
        success=True,
        safety_tags=filter_safety_labels(_MOCK_LABELS),
        all_labels=list(_MOCK_LABELS),
        objects=list(_MOCK_OBJECTS),
        text=_MOCK_TEXT,
        confidence=_MOCK_CONFIDENCE,
    )


def parse_annotate_response(payload: dict) -> VisionResult:
    """Normalize one entry of an ``images:annotate`` response."""
    responses = payload.get("responses") or [{}]
    resp = responses[0]
    if resp.get("error"):
        return VisionResult(
            success=False,
            error_message=resp["error"].get("message", "Vision API error"),
        )

    labels = [
        (a.get("description", ""), float(a.get("score", 0.0)))
        for a in resp.get("labelAnnotations", [])
    ]
    objects = [
        (o.get("name", ""), float(o.get("score", 0.0)))
        for o in resp.get("localizedObjectAnnotations", [])
    ]
    text_annotations = resp.get("textAnnotations", [])
    text = text_annotations[0].get("description", "") if text_annotations else ""
    confidence = sum(score for _, score in labels) / len(labels) if labels else 0.0

    return VisionResult(
        success=True,
        safety_tags=filter_safety_labels(labels),
        all_labels=labels,
        objects=objects,
        text=text[:MAX_TEXT_CHARS],
        confidence=confidence,
    )


class VisionAnalysisClient:
    """Label/object/text detection for incident photos."""

    def __init__(
        self,
        api_key: str = "",
        endpoint: str = "https://vision.googleapis.com/v1/images:annotate",
        enabled: bool = True,
        mock_mode: bool = True,
        timeout_s: float = 30.0,
        metrics: MetricsSink | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.endpoint = endpoint
        self.enabled = enabled
        self.mock_mode = mock_mode
        self.timeout_s = timeout_s
        self.metrics = metrics
        self._http = http_client

    @property
    def uses_mock(self) -> bool:
        return not self.enabled or self.mock_mode or not self.api_key

    def analyze(self, image_bytes: bytes) -> VisionResult:
        if self.uses_mock:
            logger.info("vision_mock_analysis", extra={"bytes": len(image_bytes)})
            return mock_result()

        if self.metrics:
            self.metrics.record_vision_call()

        body = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                "features": [
                    {"type": "LABEL_DETECTION", "maxResults": MAX_LABELS},
                    {"type": "OBJECT_LOCALIZATION", "maxResults": MAX_OBJECTS},
                    {"type": "SAFE_SEARCH_DETECTION"},
                    {"type": "TEXT_DETECTION"},
                ],
            }],
        }

        try:
            if self._http is not None:
                resp = self._http.post(
                    self.endpoint, params={"key": self.api_key}, json=body,
                    timeout=self.timeout_s,
                )
            else:
                resp = httpx.post(
                    self.endpoint, params={"key": self.api_key}, json=body,
                    timeout=self.timeout_s,
                )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("vision_request_failed", extra={"error": str(e)})
            return VisionResult(
                success=False, error_message=f"Vision API connection failed: {e}"
            )

        try:
            result = parse_annotate_response(resp.json())
        except (ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
            logger.error("vision_response_invalid", extra={"error": str(e)})
            return VisionResult(
                success=False, error_message=f"Vision API response invalid: {e}"
            )

        if not result.success:
            logger.warning("vision_backend_error", extra={"error": result.error_message})
        else:
            logger.info(
                "vision_analysis_complete",
                extra={"labels": len(result.all_labels), "safety_tags": len(result.safety_tags)},
            )
        return result
