"""Repository classes for SafeSnap data access.

Every write accepts an optional ``conn`` so a service can group several
writes in one transaction (see core.dispatch.transaction). Without it the
repository opens and commits its own.
"""

import json
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from services.api.src.safesnap.db.models import (
    image_analyses,
    incident_status_history,
    incidents,
    rca_ai_suggestions,
    rca_reports,
    users,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


@contextmanager
def _begin(engine: Engine, conn: Connection | None):
    if conn is not None:
        yield conn
    else:
        with engine.begin() as c:
            yield c


class UserRepository:
    """Data access for users. Users are owned by the identity service."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, email: str, full_name: str, role: str = "WORKER") -> dict:
        row = {
            "id": _new_id(),
            "email": email,
            "full_name": full_name,
            "role": role,
            "created_at": _now(),
        }
        with self.engine.begin() as conn:
            conn.execute(users.insert().values(row))
        return row

    def get(self, user_id: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(users).where(users.c.id == user_id)
            ).mappings().first()
            return dict(row) if row else None

    def get_by_email(self, email: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(users).where(users.c.email == email)
            ).mappings().first()
            return dict(row) if row else None


def _decode_incident(row) -> dict:
    data = dict(row)
    data["image_urls"] = json.loads(data.pop("image_urls_json") or "[]")
    data["audio_urls"] = json.loads(data.pop("audio_urls_json") or "[]")
    return data


class IncidentRepository:
    """Data access for incidents."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(
        self,
        reported_by: str,
        title: str,
        description: str,
        severity: str,
        latitude: float | None = None,
        longitude: float | None = None,
        location_description: str | None = None,
        image_urls: list[str] | None = None,
        audio_urls: list[str] | None = None,
        conn: Connection | None = None,
    ) -> dict:
        now = _now()
        row = {
            "id": _new_id(),
            "reported_by": reported_by,
            "title": title,
            "description": description,
            "severity": severity,
            "status": "OPEN",
            "latitude": latitude,
            "longitude": longitude,
            "location_description": location_description,
            "image_urls_json": json.dumps(image_urls or []),
            "audio_urls_json": json.dumps(audio_urls or []),
            "assigned_to": None,
            "reported_at": now,
            "updated_at": now,
            "updated_by": reported_by,
        }
        with _begin(self.engine, conn) as c:
            c.execute(incidents.insert().values(row))
        return _decode_incident(row)

    def get(self, incident_id: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(incidents).where(incidents.c.id == incident_id)
            ).mappings().first()
            return _decode_incident(row) if row else None

    def list_filtered(
        self,
        reported_by: str | None = None,
        status: str | None = None,
        severity: str | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict]:
        stmt = select(incidents)
        if reported_by:
            stmt = stmt.where(incidents.c.reported_by == reported_by)
        if status:
            stmt = stmt.where(incidents.c.status == status)
        if severity:
            stmt = stmt.where(incidents.c.severity == severity)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(incidents.c.title).like(pattern),
                    func.lower(incidents.c.description).like(pattern),
                )
            )
        stmt = stmt.order_by(incidents.c.reported_at.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            return [_decode_incident(r) for r in conn.execute(stmt).mappings()]

    def update(
        self,
        incident_id: str,
        updated_by: str,
        conn: Connection | None = None,
        **values,
    ) -> None:
        if "image_urls" in values:
            values["image_urls_json"] = json.dumps(values.pop("image_urls"))
        if "audio_urls" in values:
            values["audio_urls_json"] = json.dumps(values.pop("audio_urls"))
        with _begin(self.engine, conn) as c:
            c.execute(
                update(incidents)
                .where(incidents.c.id == incident_id)
                .values(updated_at=_now(), updated_by=updated_by, **values)
            )

    def delete(self, incident_id: str) -> None:
        """Delete an incident and every row hanging off it."""
        with self.engine.begin() as conn:
            for table in (
                image_analyses,
                rca_ai_suggestions,
                rca_reports,
                incident_status_history,
            ):
                conn.execute(delete(table).where(table.c.incident_id == incident_id))
            conn.execute(delete(incidents).where(incidents.c.id == incident_id))


class StatusHistoryRepository:
    """Append-only log of incident status transitions."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def add(
        self,
        incident_id: str,
        old_status: str | None,
        new_status: str,
        changed_by: str,
        reason: str | None = None,
        conn: Connection | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "incident_id": incident_id,
            "old_status": old_status,
            "new_status": new_status,
            "changed_by": changed_by,
            "reason": reason,
            "changed_at": _now(),
        }
        with _begin(self.engine, conn) as c:
            c.execute(incident_status_history.insert().values(row))
        return row

    def list_by_incident(self, incident_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(incident_status_history)
                .where(incident_status_history.c.incident_id == incident_id)
                .order_by(incident_status_history.c.changed_at.asc())
            )
            return [dict(row) for row in result.mappings()]


class ImageAnalysisRepository:
    """Data access for per-image vision results.

    Rows are terminal on insert. (incident_id, image_url) is unique; losing
    an insert race returns the row that won.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def get(self, incident_id: str, image_url: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(image_analyses).where(
                    image_analyses.c.incident_id == incident_id,
                    image_analyses.c.image_url == image_url,
                )
            ).mappings().first()
            return dict(row) if row else None

    def create(
        self,
        incident_id: str,
        image_url: str,
        processed: bool,
        tags: str = "",
        all_labels: str = "",
        text_detected: str | None = None,
        confidence_score: float = 0.0,
        error_message: str | None = None,
    ) -> dict:
        row = {
            "id": _new_id(),
            "incident_id": incident_id,
            "image_url": image_url,
            "tags": tags,
            "all_labels": all_labels,
            "text_detected": text_detected,
            "confidence_score": confidence_score,
            "processed": processed,
            "processed_at": _now(),
            "error_message": error_message,
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(image_analyses.insert().values(row))
        except IntegrityError:
            existing = self.get(incident_id, image_url)
            if existing is None:
                raise
            return existing
        return row

    def delete(self, analysis_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(image_analyses).where(image_analyses.c.id == analysis_id))

    def list_by_incident(self, incident_id: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(image_analyses)
                .where(image_analyses.c.incident_id == incident_id)
                .order_by(image_analyses.c.processed_at.desc())
            )
            return [dict(row) for row in result.mappings()]

    def list_failed(self) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(image_analyses)
                .where(image_analyses.c.processed.is_(False))
                .order_by(image_analyses.c.processed_at.asc())
            )
            return [dict(row) for row in result.mappings()]

    def counts(self) -> tuple[int, int]:
        """(total, processed) row counts."""
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(image_analyses)).scalar()
            ok = conn.execute(
                select(func.count())
                .select_from(image_analyses)
                .where(image_analyses.c.processed.is_(True))
            ).scalar()
        return total or 0, ok or 0


class RcaSuggestionRepository:
    """Data access for AI-drafted RCA suggestions, one per incident."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_by_incident(self, incident_id: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(rca_ai_suggestions)
                .where(rca_ai_suggestions.c.incident_id == incident_id)
            ).mappings().first()
            return dict(row) if row else None

    def create_generating(self, incident_id: str, category: str) -> dict | None:
        """Insert the GENERATING placeholder. None if a row already exists."""
        row = {
            "id": _new_id(),
            "incident_id": incident_id,
            "confidence_score": 0.0,
            "incident_category": category,
            "status": "GENERATING",
            "generated_at": _now(),
            "version": 0,
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(rca_ai_suggestions.insert().values(row))
        except IntegrityError:
            return None
        return row

    def update(
        self,
        incident_id: str,
        expected_version: int,
        conn: Connection | None = None,
        **values,
    ) -> bool:
        """Compare-and-set on ``version``. False when the row moved on."""
        with _begin(self.engine, conn) as c:
            result = c.execute(
                update(rca_ai_suggestions)
                .where(
                    rca_ai_suggestions.c.incident_id == incident_id,
                    rca_ai_suggestions.c.version == expected_version,
                )
                .values(version=expected_version + 1, **values)
            )
            return result.rowcount == 1

    def delete_by_incident(self, incident_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(rca_ai_suggestions)
                .where(rca_ai_suggestions.c.incident_id == incident_id)
            )

    def list_by_status(self, status: str) -> list[dict]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(rca_ai_suggestions)
                .where(rca_ai_suggestions.c.status == status)
                .order_by(rca_ai_suggestions.c.generated_at.asc())
            )
            return [dict(row) for row in result.mappings()]

    def count_by_status(self) -> dict[str, int]:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(rca_ai_suggestions.c.status, func.count())
                .group_by(rca_ai_suggestions.c.status)
            )
            return {status: count for status, count in result}

    def average_processing_time_ms(self, statuses: list[str]) -> float:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(func.avg(rca_ai_suggestions.c.processing_time_ms))
                .where(rca_ai_suggestions.c.status.in_(statuses))
            ).scalar()
        return float(value or 0.0)

    def average_tokens_since(self, since: datetime) -> float:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(func.avg(rca_ai_suggestions.c.tokens_used))
                .where(
                    rca_ai_suggestions.c.generated_at >= since,
                    rca_ai_suggestions.c.tokens_used.is_not(None),
                )
            ).scalar()
        return float(value or 0.0)

    def count_failed_since(self, since: datetime) -> int:
        with self.engine.connect() as conn:
            value = conn.execute(
                select(func.count())
                .select_from(rca_ai_suggestions)
                .where(
                    rca_ai_suggestions.c.status == "FAILED",
                    rca_ai_suggestions.c.generated_at >= since,
                )
            ).scalar()
        return value or 0


class RcaReportRepository:
    """Data access for finalized RCA reports, one per incident."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get_by_incident(self, incident_id: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(rca_reports).where(rca_reports.c.incident_id == incident_id)
            ).mappings().first()
            return dict(row) if row else None

    def create(
        self,
        incident_id: str,
        manager_id: str,
        five_whys: str,
        corrective_action: str,
        preventive_action: str,
        conn: Connection | None = None,
    ) -> dict:
        """Insert the report. Raises IntegrityError if one already exists."""
        row = {
            "id": _new_id(),
            "incident_id": incident_id,
            "manager_id": manager_id,
            "five_whys": five_whys,
            "corrective_action": corrective_action,
            "preventive_action": preventive_action,
            "created_at": _now(),
        }
        with _begin(self.engine, conn) as c:
            c.execute(rca_reports.insert().values(row))
        return row
