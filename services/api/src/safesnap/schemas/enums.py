"""Enums for the SafeSnap API."""

from enum import Enum


class Role(str, Enum):
    """Caller roles resolved from the users table."""
    WORKER = "WORKER"
    MANAGER = "MANAGER"


class IncidentSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IncidentStatus(str, Enum):
    """Lifecycle of a reported incident. Only creation (OPEN) is open to workers."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class RcaAiStatus(str, Enum):
    """States of an AI-drafted RCA suggestion."""
    GENERATING = "GENERATING"
    GENERATED = "GENERATED"
    REVIEWED = "REVIEWED"
    APPROVED = "APPROVED"  # visible to workers
    MODIFIED = "MODIFIED"  # manager edited significantly on finalize
    FAILED = "FAILED"


class IncidentCategory(str, Enum):
    """Closed set of categories the categorizer can emit, in priority order."""
    PPE_VIOLATION = "PPE_VIOLATION"
    EQUIPMENT_MALFUNCTION = "EQUIPMENT_MALFUNCTION"
    SLIP_TRIP_FALL = "SLIP_TRIP_FALL"
    LIFTING_INJURY = "LIFTING_INJURY"
    CHEMICAL_EXPOSURE = "CHEMICAL_EXPOSURE"
    ELECTRICAL_INCIDENT = "ELECTRICAL_INCIDENT"
    VEHICLE_INCIDENT = "VEHICLE_INCIDENT"
    FIRE_EXPLOSION = "FIRE_EXPLOSION"
    CONFINED_SPACE = "CONFINED_SPACE"
    GENERAL_SAFETY = "GENERAL_SAFETY"


class FileKind(str, Enum):
    """Upload folders in the blob store."""
    IMAGE = "image"
    AUDIO = "audio"
