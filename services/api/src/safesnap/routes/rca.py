"""RCA suggestion review and final report endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from services.api.src.safesnap.container import Container
from services.api.src.safesnap.domains.safety.schemas import Caller, RcaContent
from services.api.src.safesnap.routes.deps import current_caller, get_container, manager_caller
from services.api.src.safesnap.schemas.responses import (
    AiSuggestionResponse,
    DispatchResponse,
    RcaHealthResponse,
    RcaReportResponse,
    RcaStatisticsResponse,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

@router.get("/incidents/{incident_id}/rca/suggestions", response_model=AiSuggestionResponse)
def get_suggestion(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> AiSuggestionResponse:
    return AiSuggestionResponse(**container.workflow.get_suggestion(incident_id, caller))


@router.post("/incidents/{incident_id}/rca/suggestions/review", response_model=AiSuggestionResponse)
def review_suggestion(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> AiSuggestionResponse:
    return AiSuggestionResponse(**container.workflow.mark_as_reviewed(incident_id, caller))


@router.post("/incidents/{incident_id}/rca/suggestions/approve", response_model=AiSuggestionResponse)
def approve_suggestion(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> AiSuggestionResponse:
    return AiSuggestionResponse(**container.workflow.mark_as_approved(incident_id, caller))


@router.post(
    "/incidents/{incident_id}/rca/suggestions/regenerate",
    response_model=DispatchResponse,
    status_code=202,
)
def regenerate_suggestion(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> DispatchResponse:
    queued = container.incidents.dispatch_regeneration(incident_id, caller)
    return DispatchResponse(incident_id=incident_id, queued=queued)


# ---------------------------------------------------------------------------
# Final report
# ---------------------------------------------------------------------------

@router.post("/incidents/{incident_id}/rca/approve", response_model=RcaReportResponse, status_code=201)
def finalize_rca(
    incident_id: str,
    body: RcaContent,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> RcaReportResponse:
    """Persist the manager's RCA. The suggestion becomes APPROVED or MODIFIED."""
    return RcaReportResponse(**container.workflow.finalize(incident_id, body, caller))


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@router.get("/rca/statistics", response_model=RcaStatisticsResponse)
def rca_statistics(
    _: Caller = Depends(manager_caller),
    container: Container = Depends(get_container),
) -> RcaStatisticsResponse:
    return RcaStatisticsResponse(**asdict(container.workflow.statistics()))


@router.get("/rca/health", response_model=RcaHealthResponse)
def rca_health(container: Container = Depends(get_container)) -> RcaHealthResponse:
    health = container.workflow.health()
    return RcaHealthResponse(**asdict(health), openai=container.llm.service_status())


@router.get("/rca/pending-review", response_model=list[AiSuggestionResponse])
def pending_review(
    _: Caller = Depends(manager_caller),
    container: Container = Depends(get_container),
) -> list[AiSuggestionResponse]:
    return [AiSuggestionResponse(**r) for r in container.workflow.pending_review()]
