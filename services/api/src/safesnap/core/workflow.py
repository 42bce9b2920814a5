"""RCA suggestion workflow.

  GENERATING ──► GENERATED ──► REVIEWED ──► APPROVED
       │              │             │
       ▼              └─────────────┴──► (finalize) APPROVED | MODIFIED
     FAILED

Generation runs in a background job and never raises: every failure ends
in a FAILED row carrying the error. Review, approval and finalize are
manager-only, check the role before touching storage, and update the
suggestion with a compare-and-set on its version. A GENERATING row cannot
be reviewed, approved or finalized. A FAILED row can only be retried or
finalized with the manager's own text.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from services.api.src.safesnap.adapters.openai_llm import GenerativeRcaClient, parse_rca_sections
from services.api.src.safesnap.core.errors import (
    AccessDeniedError,
    AiServiceError,
    ConcurrentModificationError,
    IncidentNotFoundError,
    RateLimitExceededError,
    RcaReportExistsError,
    SuggestionNotFoundError,
    SuggestionStateError,
)
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.db.repository import (
    ImageAnalysisRepository,
    IncidentRepository,
    RcaReportRepository,
    RcaSuggestionRepository,
    UserRepository,
)
from services.api.src.safesnap.domains.safety import categorizer
from services.api.src.safesnap.domains.safety.prompts import build_prompt, template_id
from services.api.src.safesnap.domains.safety.schemas import Caller, RcaContent
from services.api.src.safesnap.schemas.enums import IncidentCategory, RcaAiStatus

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8
HEALTHY_FAILURE_LIMIT = 10

FAILED_FIVE_WHYS = "RCA generation failed"
FAILED_ACTION = "Please manually complete RCA analysis"
FAILED_TEMPLATE = "ERROR"

# Statuses whose suggestion content came back from the LLM.
_GENERATED_STATUSES = [
    RcaAiStatus.GENERATED.value,
    RcaAiStatus.REVIEWED.value,
    RcaAiStatus.APPROVED.value,
    RcaAiStatus.MODIFIED.value,
]

# Statuses with no draft a manager could review or approve.
_LOCKED_STATUSES = (RcaAiStatus.GENERATING.value, RcaAiStatus.FAILED.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def jaccard_similarity(a: str, b: str) -> float:
    """Word-set overlap of two texts. Two empty texts are identical."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def content_similarity(suggestion: dict, content: RcaContent) -> float:
    """Mean similarity of the three RCA fields."""
    pairs = [
        (suggestion.get("suggested_five_whys") or "", content.five_whys),
        (suggestion.get("suggested_corrective_action") or "", content.corrective_action),
        (suggestion.get("suggested_preventive_action") or "", content.preventive_action),
    ]
    return sum(jaccard_similarity(a, b) for a, b in pairs) / len(pairs)


@dataclass(frozen=True)
class RcaStatistics:
    total_suggestions: int
    generated_count: int
    reviewed_count: int
    approved_count: int
    modified_count: int
    failed_count: int
    success_rate: float
    average_processing_time_ms: float
    average_token_usage: float


@dataclass(frozen=True)
class RcaServiceHealth:
    openai_service_healthy: bool
    recent_failure_count: int
    pending_review_count: int
    healthy: bool


class RcaSuggestionWorkflow:
    def __init__(
        self,
        engine: Engine,
        llm: GenerativeRcaClient,
        metrics: MetricsSink | None = None,
    ):
        self.engine = engine
        self.llm = llm
        self.metrics = metrics
        self.incidents = IncidentRepository(engine)
        self.users = UserRepository(engine)
        self.analyses = ImageAnalysisRepository(engine)
        self.suggestions = RcaSuggestionRepository(engine)
        self.reports = RcaReportRepository(engine)

    # -- Generation ----------------------------------------------------------

    def generate(self, incident_id: str, force: bool = False) -> dict:
        """Draft an RCA suggestion for an incident.

        An existing suggestion is returned as is unless ``force``; forcing
        replaces it. Raises only when the incident does not exist.
        """
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)

        existing = self.suggestions.get_by_incident(incident_id)
        if existing is not None:
            if not force:
                logger.info("rca_suggestion_exists", extra={"incident_id": incident_id})
                return existing
            self.suggestions.delete_by_incident(incident_id)

        placeholder = self.suggestions.create_generating(
            incident_id, IncidentCategory.GENERAL_SAFETY.value
        )
        if placeholder is None:
            # Another worker inserted first; its row is the suggestion.
            return self.suggestions.get_by_incident(incident_id)

        t0 = time.monotonic()
        try:
            self._draft(incident, placeholder["version"])
        except RateLimitExceededError as exc:
            self._fail(incident_id, t0, f"Rate limit exceeded: {exc}", "rate_limit")
        except AiServiceError as exc:
            self._fail(incident_id, t0, f"OpenAI service error: {exc}", "openai_error")
        except Exception as exc:
            logger.exception("rca_generation_crashed", extra={"incident_id": incident_id})
            self._fail(incident_id, t0, f"Generation failed: {exc}", "unexpected_error")

        return self.suggestions.get_by_incident(incident_id)

    def _draft(self, incident: dict, version: int) -> None:
        incident_id = incident["id"]
        analyses = self.analyses.list_by_incident(incident_id)
        category = categorizer.categorize(incident, analyses)
        score = categorizer.confidence(incident, category, analyses)

        reporter = self.users.get(incident["reported_by"]) or {}
        prompt = build_prompt(
            category,
            incident,
            analyses,
            reporter.get("full_name", "Unknown"),
            reporter.get("role", "WORKER"),
        )

        t0 = time.monotonic()
        result = self.llm.generate(
            prompt,
            context={"incident_id": incident_id, "category": category.value},
            user_key=reporter.get("email"),
        )
        sections = parse_rca_sections(result.content)
        elapsed_ms = result.processing_time_ms or int((time.monotonic() - t0) * 1000)

        stored = self.suggestions.update(
            incident_id,
            version,
            suggested_five_whys=sections.five_whys,
            suggested_corrective_action=sections.corrective_actions,
            suggested_preventive_action=sections.preventive_actions,
            confidence_score=score,
            incident_category=category.value,
            template_used=template_id(category),
            model=result.model,
            tokens_used=result.tokens_used,
            processing_time_ms=elapsed_ms,
            status=RcaAiStatus.GENERATED.value,
            generated_at=_now(),
        )
        if not stored:
            logger.warning("rca_suggestion_replaced_during_generation", extra={"incident_id": incident_id})
            return

        if self.metrics:
            self.metrics.record_rca_generated(category.value)
        logger.info(
            "rca_generated",
            extra={
                "incident_id": incident_id,
                "category": category.value,
                "confidence": score,
                "tokens": result.tokens_used,
            },
        )

    def _fail(self, incident_id: str, t0: float, message: str, error_type: str) -> None:
        logger.error(
            "rca_generation_failed",
            extra={"incident_id": incident_id, "error": message, "type": error_type},
        )
        current = self.suggestions.get_by_incident(incident_id)
        if current is not None:
            self.suggestions.update(
                incident_id,
                current["version"],
                suggested_five_whys=FAILED_FIVE_WHYS,
                suggested_corrective_action=FAILED_ACTION,
                suggested_preventive_action=FAILED_ACTION,
                confidence_score=0.0,
                incident_category=IncidentCategory.GENERAL_SAFETY.value,
                template_used=FAILED_TEMPLATE,
                processing_time_ms=int((time.monotonic() - t0) * 1000),
                status=RcaAiStatus.FAILED.value,
                error_message=message,
            )
        if self.metrics:
            self.metrics.record_rca_failed(error_type)

    def retry(self, incident_id: str) -> dict:
        logger.info("rca_retry_requested", extra={"incident_id": incident_id})
        return self.generate(incident_id, force=True)

    # -- Manager review ------------------------------------------------------

    @staticmethod
    def _require_manager(caller: Caller, action: str) -> None:
        if not caller.is_manager:
            raise AccessDeniedError(f"Only managers can {action}")

    def _suggestion(self, incident_id: str) -> dict:
        suggestion = self.suggestions.get_by_incident(incident_id)
        if suggestion is None:
            raise SuggestionNotFoundError(incident_id)
        return suggestion

    def get_suggestion(self, incident_id: str, caller: Caller) -> dict:
        self._require_manager(caller, "view RCA suggestions")
        return self._suggestion(incident_id)

    def _transition(self, incident_id: str, caller: Caller, status: RcaAiStatus) -> dict:
        suggestion = self._suggestion(incident_id)
        current = suggestion["status"]
        if current in _LOCKED_STATUSES:
            raise SuggestionStateError(incident_id, current, status.value.lower())
        ok = self.suggestions.update(
            incident_id,
            suggestion["version"],
            status=status.value,
            reviewed_by=caller.user_id,
            reviewed_at=_now(),
        )
        if not ok:
            raise ConcurrentModificationError("RCA suggestion")
        logger.info(
            "rca_suggestion_transition",
            extra={"incident_id": incident_id, "status": status.value, "manager": caller.user_id},
        )
        return self._suggestion(incident_id)

    def mark_as_reviewed(self, incident_id: str, caller: Caller) -> dict:
        self._require_manager(caller, "review RCA suggestions")
        return self._transition(incident_id, caller, RcaAiStatus.REVIEWED)

    def mark_as_approved(self, incident_id: str, caller: Caller) -> dict:
        self._require_manager(caller, "approve RCA suggestions")
        return self._transition(incident_id, caller, RcaAiStatus.APPROVED)

    def finalize(self, incident_id: str, content: RcaContent, caller: Caller) -> dict:
        """Persist the manager's final RCA report, exactly once per incident.

        The suggestion ends APPROVED when the final text stays close to the
        draft, MODIFIED when the manager rewrote it.
        """
        self._require_manager(caller, "finalize RCA reports")
        suggestion = self._suggestion(incident_id)
        if suggestion["status"] == RcaAiStatus.GENERATING.value:
            raise SuggestionStateError(incident_id, suggestion["status"], "finalize")
        if self.reports.get_by_incident(incident_id) is not None:
            raise RcaReportExistsError(incident_id)

        similarity = content_similarity(suggestion, content)
        status = RcaAiStatus.MODIFIED if similarity < SIMILARITY_THRESHOLD else RcaAiStatus.APPROVED

        try:
            with self.engine.begin() as conn:
                report = self.reports.create(
                    incident_id,
                    caller.user_id,
                    content.five_whys,
                    content.corrective_action,
                    content.preventive_action,
                    conn=conn,
                )
                ok = self.suggestions.update(
                    incident_id,
                    suggestion["version"],
                    conn=conn,
                    status=status.value,
                    reviewed_by=caller.user_id,
                    reviewed_at=_now(),
                )
                if not ok:
                    raise ConcurrentModificationError("RCA suggestion")
        except IntegrityError as exc:
            raise RcaReportExistsError(incident_id) from exc

        if self.metrics:
            self.metrics.record_rca_approved(suggestion["incident_category"])
        logger.info(
            "rca_finalized",
            extra={
                "incident_id": incident_id,
                "status": status.value,
                "similarity": round(similarity, 3),
            },
        )
        return report

    # -- Reporting -----------------------------------------------------------

    def pending_review(self) -> list[dict]:
        return self.suggestions.list_by_status(RcaAiStatus.GENERATED.value)

    def statistics(self) -> RcaStatistics:
        counts = self.suggestions.count_by_status()
        total = sum(counts.values())
        failed = counts.get(RcaAiStatus.FAILED.value, 0)
        succeeded = sum(counts.get(s, 0) for s in _GENERATED_STATUSES)
        return RcaStatistics(
            total_suggestions=total,
            generated_count=counts.get(RcaAiStatus.GENERATED.value, 0),
            reviewed_count=counts.get(RcaAiStatus.REVIEWED.value, 0),
            approved_count=counts.get(RcaAiStatus.APPROVED.value, 0),
            modified_count=counts.get(RcaAiStatus.MODIFIED.value, 0),
            failed_count=failed,
            success_rate=(succeeded / total * 100) if total else 0.0,
            average_processing_time_ms=self.suggestions.average_processing_time_ms(
                _GENERATED_STATUSES
            ),
            average_token_usage=self.suggestions.average_tokens_since(
                _now() - timedelta(days=30)
            ),
        )

    def health(self) -> RcaServiceHealth:
        openai_ok = self.llm.health_check()
        failures = self.suggestions.count_failed_since(_now() - timedelta(hours=24))
        return RcaServiceHealth(
            openai_service_healthy=openai_ok,
            recent_failure_count=failures,
            pending_review_count=len(self.pending_review()),
            healthy=openai_ok and failures < HEALTHY_FAILURE_LIMIT,
        )
