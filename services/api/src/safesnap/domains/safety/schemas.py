"""Pydantic schemas for incident reports and RCA content."""

from __future__ import annotations

from pydantic import BaseModel, Field

from services.api.src.safesnap.schemas.enums import IncidentSeverity, Role


class Caller(BaseModel):
    """The authenticated user a service call is made on behalf of."""

    user_id: str
    email: str
    role: Role
    full_name: str = ""

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER


class IncidentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    severity: IncidentSeverity
    latitude: float | None = Field(None, ge=-90.0, le=90.0)
    longitude: float | None = Field(None, ge=-180.0, le=180.0)
    location_description: str | None = Field(None, max_length=1000)
    image_urls: list[str] = Field(default_factory=list)
    audio_urls: list[str] = Field(default_factory=list)


class IncidentUpdate(BaseModel):
    """Partial update. Omitted fields are left unchanged."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, min_length=1, max_length=5000)
    severity: IncidentSeverity | None = None
    latitude: float | None = Field(None, ge=-90.0, le=90.0)
    longitude: float | None = Field(None, ge=-180.0, le=180.0)
    location_description: str | None = Field(None, max_length=1000)
    image_urls: list[str] | None = None
    audio_urls: list[str] | None = None


class RcaContent(BaseModel):
    """The three RCA texts, as drafted by the LLM or finalized by a manager."""

    five_whys: str = Field(..., min_length=1)
    corrective_action: str = Field(..., min_length=1)
    preventive_action: str = Field(..., min_length=1)
