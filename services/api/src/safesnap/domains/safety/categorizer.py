"""Deterministic incident categorization from report text and image tags.

How it works:
  1. The incident title + description are lowercased into one corpus
  2. Safety tags of successfully processed image analyses are split, trimmed
     and lowercased (failed analyses contribute nothing)
  3. Categories are tested in a fixed priority order; the first whose
     keywords appear in the corpus (or whose tag hints appear in the tags)
     wins. Nothing matching means GENERAL_SAFETY
  4. Confidence is a separate, narrower keyword count for the chosen
     category, bucketed into 0.3 / 0.5 / 0.7 / 0.9

No AI is involved here. The result picks which RCA template the LLM gets.
Matching is plain substring containment, so "fall" also matches "waterfall"
and "car" matches "carrying".
"""

from __future__ import annotations

import logging

from services.api.src.safesnap.schemas.enums import IncidentCategory

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Detection rules, in priority order.
#
# (category, text keywords, tag hints). A tag hint matches when any single
# tag contains it. PPE hints are matched against all tags joined by spaces,
# so "hard" and "hat" tagged separately still count as "hard hat".
# ---------------------------------------------------------------------------

_DETECTION_RULES: list[tuple[IncidentCategory, tuple[str, ...], tuple[str, ...]]] = [
    (
        IncidentCategory.PPE_VIOLATION,
        (
            "hard hat", "helmet", "safety vest", "safety glasses", "gloves", "boots",
            "harness", "ppe", "personal protective equipment", "no helmet", "no hard hat",
            "missing vest", "not wearing", "forgot", "left behind", "without protection",
            "protective equipment",
        ),
        ("hard hat", "helmet", "safety vest", "protective equipment", "safety gear"),
    ),
    (
        IncidentCategory.EQUIPMENT_MALFUNCTION,
        (
            "malfunction", "broken", "defective", "failure", "not working",
            "machine", "equipment", "tool", "crane", "forklift", "excavator",
            "bulldozer", "drill", "saw", "grinder", "compressor", "generator",
            "conveyor", "pump", "motor", "engine", "hydraulic", "mechanical",
        ),
        ("machinery", "equipment", "tool"),
    ),
    (
        IncidentCategory.SLIP_TRIP_FALL,
        (
            "slip", "slipped", "trip", "tripped", "fall", "fell", "falling",
            "wet floor", "spill", "leak", "slippery", "stumble", "ice",
            "ladder", "stairs", "platform", "elevation", "height", "dropped",
        ),
        ("ladder", "stairs", "platform"),
    ),
    (
        IncidentCategory.LIFTING_INJURY,
        (
            "lifting", "lifted", "carrying", "moving", "heavy", "strain",
            "back injury", "pulled muscle", "herniated", "manual handling",
            "repetitive", "ergonomic", "posture", "overexertion", "twist",
        ),
        (),
    ),
    (
        IncidentCategory.CHEMICAL_EXPOSURE,
        (
            "chemical", "toxic", "hazardous material", "spill", "leak", "fumes",
            "vapor", "gas", "acid", "base", "solvent", "paint", "adhesive",
            "exposure", "inhaled", "skin contact", "eye contact", "msds", "sds",
        ),
        (),
    ),
    (
        IncidentCategory.ELECTRICAL_INCIDENT,
        (
            "electrical", "electric", "shock", "electrocuted", "voltage", "current",
            "wire", "cable", "outlet", "panel", "breaker", "short circuit",
            "arc flash", "ground fault", "lockout", "tagout", "loto",
        ),
        ("electrical", "wire", "cable"),
    ),
    (
        IncidentCategory.VEHICLE_INCIDENT,
        (
            "vehicle", "truck", "car", "forklift", "crane", "excavator", "bulldozer",
            "collision", "accident", "crash", "hit", "struck", "backed into",
            "mobile equipment", "heavy machinery", "operator", "driving",
        ),
        ("vehicle", "truck", "forklift"),
    ),
    (
        IncidentCategory.FIRE_EXPLOSION,
        (
            "fire", "flame", "burn", "burned", "explosion", "blast", "ignition",
            "combustible", "flammable", "smoke", "heat", "hot work", "welding",
            "cutting", "grinding", "spark", "overheating",
        ),
        ("fire", "welding", "cutting"),
    ),
    (
        IncidentCategory.CONFINED_SPACE,
        (
            "confined space", "tank", "vessel", "pit", "trench", "sewer",
            "tunnel", "vault", "silo", "oxygen", "ventilation", "atmosphere",
            "entry permit", "attendant", "rescue",
        ),
        (),
    ),
]

# ---------------------------------------------------------------------------
# Confidence rules: a smaller keyword set per category. Each text keyword
# found counts once; each tag containing any hint counts once.
# ---------------------------------------------------------------------------

_CONFIDENCE_RULES: dict[IncidentCategory, tuple[tuple[str, ...], tuple[str, ...]]] = {
    IncidentCategory.PPE_VIOLATION: (
        ("hard hat", "helmet", "safety vest", "safety glasses", "gloves", "boots",
         "ppe", "personal protective equipment", "no helmet", "not wearing"),
        ("hard hat", "helmet", "safety vest"),
    ),
    IncidentCategory.EQUIPMENT_MALFUNCTION: (
        ("malfunction", "broken", "equipment", "machine", "tool", "crane", "forklift"),
        ("machinery", "equipment"),
    ),
    IncidentCategory.SLIP_TRIP_FALL: (
        ("slip", "trip", "fall", "ladder", "stairs", "wet floor", "height"),
        ("ladder", "stairs"),
    ),
    IncidentCategory.LIFTING_INJURY: (
        ("lifting", "carrying", "heavy", "back injury", "strain", "manual handling"),
        (),
    ),
    IncidentCategory.CHEMICAL_EXPOSURE: (
        ("chemical", "toxic", "spill", "fumes", "exposure", "hazardous"),
        (),
    ),
    IncidentCategory.ELECTRICAL_INCIDENT: (
        ("electrical", "shock", "voltage", "wire", "cable", "arc flash"),
        ("electrical", "wire"),
    ),
    IncidentCategory.VEHICLE_INCIDENT: (
        ("vehicle", "truck", "forklift", "collision", "accident", "struck"),
        ("vehicle", "forklift"),
    ),
    IncidentCategory.FIRE_EXPLOSION: (
        ("fire", "burn", "explosion", "welding", "spark", "heat"),
        ("fire", "welding"),
    ),
    IncidentCategory.CONFINED_SPACE: (
        ("confined space", "tank", "pit", "trench", "ventilation", "atmosphere"),
        (),
    ),
}


def _corpus(incident: dict) -> str:
    return f"{incident.get('title', '')} {incident.get('description', '')}".lower()


def image_tags(analyses: list[dict]) -> list[str]:
    """Normalized tags of processed analyses."""
    tags: list[str] = []
    for a in analyses:
        if not a.get("processed"):
            continue
        tags.extend(t.strip().lower() for t in (a.get("tags") or "").split(",") if t.strip())
    return tags


def _tag_hit(category: IncidentCategory, tags: list[str], hints: tuple[str, ...]) -> bool:
    if category == IncidentCategory.PPE_VIOLATION:
        tags = [" ".join(tags)]
    return any(hint in tag for tag in tags for hint in hints)


def categorize(incident: dict, analyses: list[dict] | None = None) -> IncidentCategory:
    """Pick the first category in priority order whose rules match."""
    text = _corpus(incident)
    tags = image_tags(analyses or [])

    for category, keywords, tag_hints in _DETECTION_RULES:
        if any(kw in text for kw in keywords) or _tag_hit(category, tags, tag_hints):
            logger.info(
                "incident_categorized",
                extra={"incident_id": incident.get("id"), "category": category.value},
            )
            return category

    return IncidentCategory.GENERAL_SAFETY


def match_count(
    incident: dict, category: IncidentCategory, analyses: list[dict] | None = None
) -> int:
    if category == IncidentCategory.GENERAL_SAFETY:
        return 1
    keywords, tag_hints = _CONFIDENCE_RULES[category]
    text = _corpus(incident)
    tags = image_tags(analyses or [])
    return (
        sum(1 for kw in keywords if kw in text)
        + sum(1 for tag in tags if any(hint in tag for hint in tag_hints))
    )


def confidence(
    incident: dict, category: IncidentCategory, analyses: list[dict] | None = None
) -> float:
    """0.9 for three or more matches, 0.7 for two, 0.5 for one, 0.3 otherwise."""
    matches = match_count(incident, category, analyses)
    if matches >= 3:
        return 0.9
    if matches == 2:
        return 0.7
    if matches == 1:
        return 0.5
    return 0.3
