"""SQLAlchemy table definitions for SafeSnap."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    false,
)

from services.api.src.safesnap.schemas.enums import (
    IncidentSeverity,
    IncidentStatus,
    RcaAiStatus,
    Role,
)

metadata = MetaData()


def _one_of(column: str, enum_cls, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


users = Table(
    "users",
    metadata,
    Column("id", String, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("role", String(16), nullable=False, server_default="WORKER"),
    Column("created_at", DateTime(timezone=True), nullable=False),
    _one_of("role", Role, "ck_users_role"),
)

incidents = Table(
    "incidents",
    metadata,
    Column("id", String, primary_key=True),
    Column("reported_by", String, ForeignKey("users.id"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("severity", String(16), nullable=False),
    Column("status", String(32), nullable=False, server_default="OPEN"),
    Column("latitude", Float, nullable=True),
    Column("longitude", Float, nullable=True),
    Column("location_description", Text, nullable=True),
    Column("image_urls_json", Text, nullable=False, server_default="[]"),
    Column("audio_urls_json", Text, nullable=False, server_default="[]"),
    Column("assigned_to", String, ForeignKey("users.id"), nullable=True),
    Column("reported_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("updated_by", String, ForeignKey("users.id"), nullable=True),
    _one_of("severity", IncidentSeverity, "ck_incidents_severity"),
    _one_of("status", IncidentStatus, "ck_incidents_status"),
    Index("ix_incidents_reported_by", "reported_by"),
    Index("ix_incidents_status", "status"),
    Index("ix_incidents_reported_at", "reported_at"),
)

incident_status_history = Table(
    "incident_status_history",
    metadata,
    Column("id", String, primary_key=True),
    Column("incident_id", String, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False),
    Column("old_status", String(32), nullable=True),
    Column("new_status", String(32), nullable=False),
    Column("changed_by", String, ForeignKey("users.id"), nullable=False),
    Column("reason", Text, nullable=True),
    Column("changed_at", DateTime(timezone=True), nullable=False),
    Index("ix_status_history_incident", "incident_id"),
)

image_analyses = Table(
    "image_analyses",
    metadata,
    Column("id", String, primary_key=True),
    Column("incident_id", String, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False),
    Column("image_url", Text, nullable=False),
    Column("tags", Text, nullable=False, server_default=""),
    Column("all_labels", Text, nullable=False, server_default=""),
    Column("text_detected", Text, nullable=True),
    Column("confidence_score", Float, nullable=False, server_default="0"),
    Column("processed", Boolean, nullable=False, server_default=false()),
    Column("processed_at", DateTime(timezone=True), nullable=False),
    Column("error_message", Text, nullable=True),
    UniqueConstraint("incident_id", "image_url", name="uq_image_analyses_incident_url"),
    Index("ix_image_analyses_processed", "processed"),
)

rca_ai_suggestions = Table(
    "rca_ai_suggestions",
    metadata,
    Column("id", String, primary_key=True),
    Column("incident_id", String, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("suggested_five_whys", Text, nullable=True),
    Column("suggested_corrective_action", Text, nullable=True),
    Column("suggested_preventive_action", Text, nullable=True),
    Column("confidence_score", Float, nullable=False, server_default="0"),
    Column("incident_category", String(32), nullable=False),
    Column("template_used", String(64), nullable=True),
    Column("model", String(64), nullable=True),
    Column("tokens_used", Integer, nullable=True),
    Column("processing_time_ms", Integer, nullable=True),
    Column("status", String(16), nullable=False),
    Column("generated_at", DateTime(timezone=True), nullable=False),
    Column("reviewed_at", DateTime(timezone=True), nullable=True),
    Column("reviewed_by", String, ForeignKey("users.id"), nullable=True),
    Column("error_message", Text, nullable=True),
    Column("version", Integer, nullable=False, server_default="0"),
    _one_of("status", RcaAiStatus, "ck_rca_suggestions_status"),
    Index("ix_rca_suggestions_status", "status"),
    Index("ix_rca_suggestions_generated", "generated_at"),
)

rca_reports = Table(
    "rca_reports",
    metadata,
    Column("id", String, primary_key=True),
    Column("incident_id", String, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, unique=True),
    Column("manager_id", String, ForeignKey("users.id"), nullable=False),
    Column("five_whys", Text, nullable=False),
    Column("corrective_action", Text, nullable=False),
    Column("preventive_action", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)
