"""Incident endpoints."""

from fastapi import APIRouter, Depends, Query

from services.api.src.safesnap.container import Container
from services.api.src.safesnap.domains.safety.schemas import Caller, IncidentCreate, IncidentUpdate
from services.api.src.safesnap.routes.deps import current_caller, get_container
from services.api.src.safesnap.schemas.enums import IncidentSeverity, IncidentStatus
from services.api.src.safesnap.schemas.responses import (
    AssignRequest,
    IncidentResponse,
    IncidentViewResponse,
    StatusHistoryResponse,
    StatusUpdateRequest,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

@router.post("/incidents", response_model=IncidentResponse, status_code=201)
def create_incident(
    body: IncidentCreate,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> IncidentResponse:
    """Report a new incident. Enrichment and RCA drafting run in the background."""
    row = container.incidents.create(body, caller)
    return IncidentResponse(**row)


@router.get("/incidents", response_model=list[IncidentResponse])
def list_incidents(
    status: IncidentStatus | None = None,
    severity: IncidentSeverity | None = None,
    search: str | None = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> list[IncidentResponse]:
    """Workers see their own reports; managers see all of them."""
    rows = container.incidents.list_for(
        caller,
        status=status.value if status else None,
        severity=severity.value if severity else None,
        search=search,
        limit=limit,
        offset=offset,
    )
    return [IncidentResponse(**r) for r in rows]


@router.get("/incidents/{incident_id}", response_model=IncidentViewResponse)
def get_incident(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> IncidentViewResponse:
    return IncidentViewResponse(**container.incidents.get_view(incident_id, caller))


@router.put("/incidents/{incident_id}", response_model=IncidentResponse)
def update_incident(
    incident_id: str,
    body: IncidentUpdate,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> IncidentResponse:
    row = container.incidents.update(incident_id, body, caller)
    return IncidentResponse(**row)


@router.delete("/incidents/{incident_id}", status_code=204)
def delete_incident(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> None:
    container.incidents.delete(incident_id, caller)


# ---------------------------------------------------------------------------
# Manager actions
# ---------------------------------------------------------------------------

@router.patch("/incidents/{incident_id}/status", response_model=IncidentResponse)
def update_status(
    incident_id: str,
    body: StatusUpdateRequest,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> IncidentResponse:
    row = container.incidents.update_status(incident_id, body.status, caller, reason=body.reason)
    return IncidentResponse(**row)


@router.patch("/incidents/{incident_id}/assign", response_model=IncidentResponse)
def assign_incident(
    incident_id: str,
    body: AssignRequest,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> IncidentResponse:
    row = container.incidents.assign(incident_id, body.assignee_email.strip().lower(), caller)
    return IncidentResponse(**row)


@router.get("/incidents/{incident_id}/history", response_model=list[StatusHistoryResponse])
def status_history(
    incident_id: str,
    caller: Caller = Depends(current_caller),
    container: Container = Depends(get_container),
) -> list[StatusHistoryResponse]:
    rows = container.incidents.status_history(incident_id, caller)
    return [StatusHistoryResponse(**r) for r in rows]
