"""Pydantic request/response models for the SafeSnap API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from services.api.src.safesnap.schemas.enums import FileKind, IncidentStatus


# -- Requests ---------------------------------------------------------------

class StatusUpdateRequest(BaseModel):
    status: IncidentStatus
    reason: str | None = Field(None, max_length=1000)


class AssignRequest(BaseModel):
    assignee_email: str


class PresignRequest(BaseModel):
    kind: FileKind
    extension: str = Field(..., min_length=1, max_length=10)


# -- Responses ---------------------------------------------------------------

class IncidentResponse(BaseModel):
    id: str
    title: str
    description: str
    severity: str
    status: str
    latitude: float | None = None
    longitude: float | None = None
    location_description: str | None = None
    image_urls: list[str] = []
    audio_urls: list[str] = []
    reported_by: str
    assigned_to: str | None = None
    reported_at: datetime
    updated_at: datetime


class ImageAnalysisResponse(BaseModel):
    id: str
    incident_id: str
    image_url: str
    tags: str
    all_labels: str
    text_detected: str | None
    confidence_score: float
    processed: bool
    processed_at: datetime
    error_message: str | None


class AiSuggestionResponse(BaseModel):
    """Full suggestion, as managers see it."""

    incident_id: str
    suggested_five_whys: str | None
    suggested_corrective_action: str | None
    suggested_preventive_action: str | None
    confidence_score: float
    incident_category: str
    template_used: str | None
    model: str | None
    tokens_used: int | None
    processing_time_ms: int | None
    status: str
    generated_at: datetime
    reviewed_at: datetime | None
    reviewed_by: str | None
    error_message: str | None
    version: int


class ApprovedSuggestionResponse(BaseModel):
    """The part of an APPROVED suggestion workers may see."""

    suggested_five_whys: str | None
    suggested_corrective_action: str | None
    suggested_preventive_action: str | None
    reviewed_by_name: str | None


class RcaReportResponse(BaseModel):
    id: str
    incident_id: str
    manager_id: str
    five_whys: str
    corrective_action: str
    preventive_action: str
    created_at: datetime


class IncidentViewResponse(IncidentResponse):
    reporter_name: str | None
    assignee_name: str | None
    image_tags: list[str]
    image_analyses: list[ImageAnalysisResponse]
    rca_report: RcaReportResponse | None
    ai_suggestion: AiSuggestionResponse | ApprovedSuggestionResponse | None


class StatusHistoryResponse(BaseModel):
    id: str
    incident_id: str
    old_status: str | None
    new_status: str
    changed_by: str
    reason: str | None
    changed_at: datetime


class EnrichmentStatsResponse(BaseModel):
    total: int
    success: int
    failure: int
    success_rate: float


class RcaStatisticsResponse(BaseModel):
    total_suggestions: int
    generated_count: int
    reviewed_count: int
    approved_count: int
    modified_count: int
    failed_count: int
    success_rate: float
    average_processing_time_ms: float
    average_token_usage: float


class RcaHealthResponse(BaseModel):
    openai_service_healthy: bool
    recent_failure_count: int
    pending_review_count: int
    healthy: bool
    openai: dict


class PresignResponse(BaseModel):
    upload_url: str
    final_url: str
    file_name: str
    content_type: str
    expires_in_s: int


class DispatchResponse(BaseModel):
    incident_id: str | None = None
    queued: bool
