"""Incident aggregate: creation, updates, manager actions and the assembled view.

Creation commits the incident and its first status-history row together,
then hands one background job to the dispatcher: enrich the images, then
draft the RCA suggestion from whatever the enrichment produced.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from services.api.src.safesnap.core.dispatch import transaction
from services.api.src.safesnap.core.enrichment import ImageEnrichmentPipeline
from services.api.src.safesnap.core.errors import (
    AccessDeniedError,
    IncidentNotFoundError,
    UserNotFoundError,
)
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.core.workflow import RcaSuggestionWorkflow
from services.api.src.safesnap.db.repository import (
    IncidentRepository,
    RcaReportRepository,
    RcaSuggestionRepository,
    StatusHistoryRepository,
    UserRepository,
)
from services.api.src.safesnap.domains.safety.schemas import Caller, IncidentCreate, IncidentUpdate
from services.api.src.safesnap.schemas.enums import IncidentStatus, RcaAiStatus

logger = logging.getLogger(__name__)


def flatten_tags(analyses: list[dict]) -> list[str]:
    """Safety tags of processed analyses, in display case, without duplicates."""
    tags: list[str] = []
    for a in analyses:
        if not a.get("processed"):
            continue
        for tag in (a.get("tags") or "").split(","):
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tags


class IncidentService:
    def __init__(
        self,
        engine: Engine,
        dispatcher,
        enrichment: ImageEnrichmentPipeline,
        workflow: RcaSuggestionWorkflow,
        metrics: MetricsSink | None = None,
    ):
        self.engine = engine
        self.dispatcher = dispatcher
        self.enrichment = enrichment
        self.workflow = workflow
        self.metrics = metrics
        self.incidents = IncidentRepository(engine)
        self.history = StatusHistoryRepository(engine)
        self.users = UserRepository(engine)
        self.suggestions = RcaSuggestionRepository(engine)
        self.reports = RcaReportRepository(engine)

    # -- Background work -------------------------------------------------------

    def enrich_then_generate(self, incident_id: str, image_urls: list[str]) -> None:
        """Background job body. Enrichment failure does not stop generation."""
        if image_urls:
            try:
                self.enrichment.process_incident_images(incident_id, image_urls)
            except Exception:
                logger.exception("enrichment_job_failed", extra={"incident_id": incident_id})
        self.workflow.generate(incident_id)

    def _dispatch_enrichment(self, incident_id: str, image_urls: list[str]) -> bool:
        return self.dispatcher.submit(
            f"enrich:{incident_id}",
            self.enrichment.process_incident_images,
            incident_id,
            image_urls,
        )

    # -- Access ----------------------------------------------------------------

    def _get(self, incident_id: str) -> dict:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    def _get_visible(self, incident_id: str, caller: Caller) -> dict:
        incident = self._get(incident_id)
        if not caller.is_manager and incident["reported_by"] != caller.user_id:
            raise AccessDeniedError("You can only access incidents you reported")
        return incident

    @staticmethod
    def _require_manager(caller: Caller, action: str) -> None:
        if not caller.is_manager:
            raise AccessDeniedError(f"Only managers can {action}")

    # -- Commands --------------------------------------------------------------

    def create(self, payload: IncidentCreate, caller: Caller) -> dict:
        with transaction(self.engine) as uow:
            incident = self.incidents.create(
                reported_by=caller.user_id,
                title=payload.title,
                description=payload.description,
                severity=payload.severity.value,
                latitude=payload.latitude,
                longitude=payload.longitude,
                location_description=payload.location_description,
                image_urls=payload.image_urls,
                audio_urls=payload.audio_urls,
                conn=uow.conn,
            )
            self.history.add(
                incident["id"], None, IncidentStatus.OPEN.value, caller.user_id,
                reason="Incident reported", conn=uow.conn,
            )
            uow.after_commit(
                lambda: self.dispatcher.submit(
                    f"enrich_and_generate:{incident['id']}",
                    self.enrich_then_generate,
                    incident["id"],
                    list(payload.image_urls),
                )
            )

        if self.metrics:
            self.metrics.record_incident_created()
        logger.info(
            "incident_created",
            extra={
                "incident_id": incident["id"],
                "severity": incident["severity"],
                "images": len(payload.image_urls),
            },
        )
        return incident

    def update(self, incident_id: str, payload: IncidentUpdate, caller: Caller) -> dict:
        incident = self._get_visible(incident_id, caller)
        values = payload.model_dump(exclude_unset=True, mode="json")
        if not values:
            return incident

        new_urls = [
            url for url in values.get("image_urls") or []
            if url not in incident["image_urls"]
        ]
        with transaction(self.engine) as uow:
            self.incidents.update(incident_id, caller.user_id, conn=uow.conn, **values)
            if new_urls:
                uow.after_commit(lambda: self._dispatch_enrichment(incident_id, new_urls))

        logger.info(
            "incident_updated",
            extra={"incident_id": incident_id, "fields": sorted(values), "new_images": len(new_urls)},
        )
        return self._get(incident_id)

    def update_status(
        self,
        incident_id: str,
        status: IncidentStatus,
        caller: Caller,
        reason: str | None = None,
    ) -> dict:
        self._require_manager(caller, "change incident status")
        incident = self._get(incident_id)
        if incident["status"] == status.value:
            return incident

        with transaction(self.engine) as uow:
            self.incidents.update(incident_id, caller.user_id, conn=uow.conn, status=status.value)
            self.history.add(
                incident_id, incident["status"], status.value, caller.user_id,
                reason=reason, conn=uow.conn,
            )

        logger.info(
            "incident_status_changed",
            extra={"incident_id": incident_id, "from": incident["status"], "to": status.value},
        )
        return self._get(incident_id)

    def assign(self, incident_id: str, assignee_email: str, caller: Caller) -> dict:
        self._require_manager(caller, "assign incidents")
        self._get(incident_id)
        assignee = self.users.get_by_email(assignee_email)
        if assignee is None:
            raise UserNotFoundError(assignee_email)

        self.incidents.update(incident_id, caller.user_id, assigned_to=assignee["id"])
        logger.info(
            "incident_assigned",
            extra={"incident_id": incident_id, "assignee_id": assignee["id"]},
        )
        return self._get(incident_id)

    def delete(self, incident_id: str, caller: Caller) -> None:
        self._require_manager(caller, "delete incidents")
        self._get(incident_id)
        self.incidents.delete(incident_id)
        logger.info("incident_deleted", extra={"incident_id": incident_id})

    def dispatch_enrichment(self, incident_id: str, caller: Caller) -> bool:
        """Queue enrichment for every image of an incident."""
        incident = self._get_visible(incident_id, caller)
        return self._dispatch_enrichment(incident_id, incident["image_urls"])

    def dispatch_regeneration(self, incident_id: str, caller: Caller) -> bool:
        """Queue a forced redraft of the incident's RCA suggestion."""
        self._require_manager(caller, "regenerate RCA suggestions")
        self._get(incident_id)
        logger.info("rca_regeneration_requested", extra={"incident_id": incident_id})
        return self.dispatcher.submit(
            f"regenerate:{incident_id}", self.workflow.retry, incident_id
        )

    # -- Queries ---------------------------------------------------------------

    def list_for(
        self,
        caller: Caller,
        status: str | None = None,
        severity: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        return self.incidents.list_filtered(
            reported_by=None if caller.is_manager else caller.user_id,
            status=status,
            severity=severity,
            search=search,
            limit=limit,
            offset=offset,
        )

    def status_history(self, incident_id: str, caller: Caller) -> list[dict]:
        self._get_visible(incident_id, caller)
        return self.history.list_by_incident(incident_id)

    def analyses_for(self, incident_id: str, caller: Caller) -> list[dict]:
        self._get_visible(incident_id, caller)
        return self.enrichment.incident_analyses(incident_id)

    def _name(self, user_id: str | None) -> str | None:
        if not user_id:
            return None
        user = self.users.get(user_id)
        return user["full_name"] if user else None

    def get_view(self, incident_id: str, caller: Caller) -> dict:
        """Incident with its related rows, filtered for the caller's role.

        Managers see the AI suggestion in any state. Workers see it only once
        APPROVED, reduced to the three texts and the reviewer's name.
        """
        incident = self._get_visible(incident_id, caller)
        analyses = self.enrichment.incident_analyses(incident_id)
        suggestion = self.suggestions.get_by_incident(incident_id)

        ai_suggestion = None
        if suggestion is not None:
            if caller.is_manager:
                ai_suggestion = suggestion
            elif suggestion["status"] == RcaAiStatus.APPROVED.value:
                ai_suggestion = {
                    "suggested_five_whys": suggestion["suggested_five_whys"],
                    "suggested_corrective_action": suggestion["suggested_corrective_action"],
                    "suggested_preventive_action": suggestion["suggested_preventive_action"],
                    "reviewed_by_name": self._name(suggestion.get("reviewed_by")),
                }

        return {
            **incident,
            "reporter_name": self._name(incident["reported_by"]),
            "assignee_name": self._name(incident.get("assigned_to")),
            "image_tags": flatten_tags(analyses),
            "image_analyses": analyses if caller.is_manager else [],
            "rca_report": self.reports.get_by_incident(incident_id),
            "ai_suggestion": ai_suggestion,
        }
