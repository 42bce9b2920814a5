"""Image analysis endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from services.api.src.safesnap.container import Container
from services.api.src.safesnap.domains.safety.schemas import Caller
from services.api.src.safesnap.routes.deps import current_caller, get_container, manager_caller
from services.api.src.safesnap.schemas.responses import (
    DispatchResponse,
    EnrichmentStatsResponse,
    ImageAnalysisResponse,
)

router = APIRouter()


@router.get("/image-analysis/incidents/{incident_id}", response_model=list[ImageAnalysisResponse])
def incident_analyses(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> list[ImageAnalysisResponse]:
    rows = container.incidents.analyses_for(incident_id, caller)
    return [ImageAnalysisResponse(**r) for r in rows]


@router.post(
    "/image-analysis/incidents/{incident_id}/process",
    response_model=DispatchResponse,
    status_code=202,
)
def process_incident_images(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> DispatchResponse:
    queued = container.incidents.dispatch_enrichment(incident_id, caller)
    return DispatchResponse(incident_id=incident_id, queued=queued)


@router.get("/image-analysis/stats", response_model=EnrichmentStatsResponse)
def enrichment_stats(
    _: Caller = Depends(manager_caller),
    container: Container = Depends(get_container),
) -> EnrichmentStatsResponse:
    return EnrichmentStatsResponse(**asdict(container.enrichment.stats()))


@router.post("/image-analysis/reprocess-failed", response_model=DispatchResponse, status_code=202)
def reprocess_failed(
    _: Caller = Depends(manager_caller),
    container: Container = Depends(get_container),
) -> DispatchResponse:
    queued = container.dispatcher.submit(
        "reprocess_failed", container.enrichment.reprocess_failed_analyses
    )
    return DispatchResponse(queued=queued)
