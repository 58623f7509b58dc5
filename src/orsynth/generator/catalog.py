# src/orsynth/generator/catalog.py
"""
@brief
Static generation tables: speed classes, specialties, milestone templates,
implant specs and distribution weights.

@details
All minute values are plain integers. Ranges are inclusive (lo, hi) tuples
meant for `rng.randint(lo, hi)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time

DEFAULT_CASE_PREFIX = "DEMO"
DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True, slots=True)
class SpeedConfig:
    cases_per_day: tuple[int, int]
    start_time: time
    surgical_time: tuple[int, int]
    factor: float
    callback_pct: tuple[int, int]


SPEED_CONFIGS: dict[str, SpeedConfig] = {
    "fast": SpeedConfig((6, 8), time(7, 0), (28, 35), 0.70, (20, 40)),
    "average": SpeedConfig((4, 6), time(7, 30), (48, 59), 1.00, (50, 70)),
    "slow": SpeedConfig((3, 4), time(7, 30), (65, 88), 1.30, (80, 100)),
}

# Specialties with their own cases-per-day envelope regardless of speed class
SPECIALTY_CASES_PER_DAY: dict[str, tuple[int, int]] = {
    "hand_wrist": (5, 7),
    "spine": (3, 5),
}

# Non-surgical minutes inside a procedure's total duration
SPECIALTY_OVERHEAD: dict[str, int] = {
    "joint": 40,
    "spine": 48,
    "hand_wrist": 30,
}

MIN_SURGICAL_MINUTES = 15
DURATION_JITTER = (-5, 5)

SPECIALTY_PROCEDURES: dict[str, list[str]] = {
    "joint": ["THA", "TKA", "Mako THA", "Mako TKA"],
    "hand_wrist": [
        "Distal Radius ORIF",
        "Carpal Tunnel Release",
        "Trigger Finger Release",
        "Wrist Arthroscopy",
        "TFCC Repair",
    ],
    "spine": [
        "Lumbar Microdiscectomy",
        "ACDF",
        "Lumbar Laminectomy",
        "Posterior Cervical Foraminotomy",
        "Kyphoplasty",
    ],
}

# Surgical (incision to closing) minutes for procedures with a known envelope
PROCEDURE_SURGICAL_TIMES: dict[str, tuple[int, int]] = {
    "Distal Radius ORIF": (45, 60),
    "Carpal Tunnel Release": (15, 25),
    "Trigger Finger Release": (10, 15),
    "Wrist Arthroscopy": (30, 45),
    "TFCC Repair": (35, 50),
    "Lumbar Microdiscectomy": (45, 60),
    "ACDF": (60, 90),
    "Lumbar Laminectomy": (50, 75),
    "Posterior Cervical Foraminotomy": (40, 55),
    "Kyphoplasty": (30, 45),
}


def fallback_duration_range(procedure_name: str, specialty: str, speed: str) -> tuple[int, int]:
    """
    @brief
    Total-duration range used when neither an override nor a catalog default exists.

    @details
    Keyed by procedure name when the procedure has a known surgical envelope,
    otherwise by speed class. The specialty overhead is added back so that the
    value is comparable with catalog durations.
    """
    overhead = SPECIALTY_OVERHEAD[specialty]
    lo, hi = PROCEDURE_SURGICAL_TIMES.get(procedure_name, SPEED_CONFIGS[speed].surgical_time)
    return lo + overhead, hi + overhead


# ------------------------------------------------------------
# Timing between and within cases
# ------------------------------------------------------------
START_VARIANCE_ON_TIME = (-5, 10)
START_VARIANCE_LATE = (10, 30)
ON_TIME_SHARE = 0.80
LATE_START_JITTER = (0, 5)
TURNOVER_MINUTES = (15, 25)
FLIP_TRANSIT_MINUTES = (3, 8)
FLIP_FALLBACK_INTERVAL = 90

# ------------------------------------------------------------
# Milestone templates
# ------------------------------------------------------------
CANONICAL_MILESTONES: tuple[str, ...] = (
    "patient_in",
    "anes_start",
    "anes_end",
    "prep_drape_start",
    "prep_drape_complete",
    "incision",
    "closing",
    "closing_complete",
    "patient_out",
    "room_cleaned",
)

@dataclass(frozen=True, slots=True)
class MilestoneTemplate:
    """
    Pre-incision offsets are minutes from patient_in. Post-incision offsets
    are minutes after `incision + surgical_time`.
    """

    pre_incision: dict[str, int]
    post_incision: dict[str, int]


MILESTONE_TEMPLATES: dict[str, MilestoneTemplate] = {
    "joint": MilestoneTemplate(
        pre_incision={
            "patient_in": 0,
            "anes_start": 3,
            "anes_end": 15,
            "prep_drape_start": 17,
            "prep_drape_complete": 25,
            "incision": 28,
        },
        post_incision={"closing": 0, "closing_complete": 8, "patient_out": 12, "room_cleaned": 25},
    ),
    "hand_wrist": MilestoneTemplate(
        pre_incision={
            "patient_in": 0,
            "prep_drape_start": 8,
            "prep_drape_complete": 15,
            "incision": 18,
        },
        post_incision={"closing": 0, "closing_complete": 5, "patient_out": 10, "room_cleaned": 20},
    ),
    "spine": MilestoneTemplate(
        pre_incision={
            "patient_in": 0,
            "anes_start": 3,
            "anes_end": 18,
            "prep_drape_start": 20,
            "prep_drape_complete": 28,
            "incision": 32,
        },
        post_incision={"closing": 0, "closing_complete": 12, "patient_out": 20, "room_cleaned": 35},
    ),
}

MILESTONE_BUMP_CHANCE = 0.15
MILESTONE_BUMPS: dict[str, tuple[int, int]] = {
    "anes_end": (5, 12),
    "closing": (5, 15),
    "closing_complete": (5, 12),
}

# ------------------------------------------------------------
# Case attributes
# ------------------------------------------------------------
PAYER_WEIGHTS: dict[str, float] = {
    "Medicare": 0.45,
    "BCBS": 0.30,
    "Aetna": 0.125,
    "UnitedHealthcare": 0.125,
}
DEFAULT_PAYER_WEIGHT = 0.25

OPERATIVE_SIDES: tuple[str | None, ...] = ("Left", "Right", "Bilateral", None)

COMMON_SIZE_CHANCE = 0.70


@dataclass(frozen=True, slots=True)
class ImplantSpec:
    name: str
    sizes: tuple[str, ...]
    common: tuple[str, ...]


def _spec(name: str, sizes: str, common: str) -> ImplantSpec:
    return ImplantSpec(name, tuple(sizes.split()), tuple(common.split()))


IMPLANT_SPECS: dict[str, dict[str, dict[str, ImplantSpec]]] = {
    "Stryker": {
        "THA": {
            "cup": _spec("Tritanium Cup", "44mm 46mm 48mm 50mm 52mm 54mm 56mm 58mm 60mm", "52mm 54mm 56mm"),
            "stem": _spec("Accolade II", "0 1 2 3 4 5 6 7 8 9 10 11", "3 4 5 6"),
            "head": _spec("V40 Head", "28mm 32mm 36mm 40mm", "32mm 36mm"),
            "liner": _spec("X3 Liner", "28mm 32mm 36mm 40mm", "32mm 36mm"),
        },
        "TKA": {
            "femur": _spec("Triathlon Femur", "1 2 3 4 5 6 7 8", "3 4 5 6"),
            "tibia": _spec("Triathlon Tibia", "1 2 3 4 5 6 7 8", "3 4 5 6"),
            "poly": _spec("Triathlon Insert", "9mm 10mm 11mm 12mm 14mm 16mm 18mm", "10mm 11mm 12mm"),
            "patella": _spec("Triathlon Patella", "29mm 32mm 35mm 38mm", "32mm 35mm"),
        },
    },
    "Zimmer Biomet": {
        "THA": {
            "cup": _spec("G7 Cup", "44mm 46mm 48mm 50mm 52mm 54mm 56mm 58mm 60mm", "50mm 52mm 54mm 56mm"),
            "stem": _spec("Taperloc", "4 6 8 10 12 14 16 18 20", "10 12 14"),
            "head": _spec("Biolox Head", "28mm 32mm 36mm 40mm", "32mm 36mm"),
            "liner": _spec("E1 Liner", "28mm 32mm 36mm 40mm", "32mm 36mm"),
        },
        "TKA": {
            "femur": _spec("Persona Femur", "1 2 3 4 5 6 7 8 9 10 11 12", "3 4 5 6 7"),
            "tibia": _spec("Persona Tibia", "1 2 3 4 5 6 7 8 9", "3 4 5 6"),
            "poly": _spec("Persona Bearing", "8mm 9mm 10mm 11mm 12mm 13mm 14mm", "10mm 11mm 12mm"),
            "patella": _spec("Persona Patella", "8mm 10mm 12mm 14mm", "10mm 12mm"),
        },
    },
    "DePuy Synthes": {
        "THA": {
            "cup": _spec("Pinnacle Cup", "44mm 46mm 48mm 50mm 52mm 54mm 56mm 58mm 60mm", "50mm 52mm 54mm 56mm"),
            "stem": _spec("Corail Stem", "8 9 10 11 12 13 14 15 16 17 18", "11 12 13 14"),
            "head": _spec("Articul/eze Head", "28mm 32mm 36mm 40mm", "32mm 36mm"),
            "liner": _spec("Marathon Liner", "28mm 32mm 36mm 40mm", "32mm 36mm"),
        },
        "TKA": {
            "femur": _spec("ATTUNE Femur", "3 4 5 6 7 8 9 10", "5 6 7 8"),
            "tibia": _spec("ATTUNE Tibia", "1 2 3 4 5 6 7 8 9 10", "4 5 6 7"),
            "poly": _spec("ATTUNE Insert", "8mm 9mm 10mm 11mm 12mm 14mm 16mm 18mm", "10mm 11mm 12mm"),
            "patella": _spec("ATTUNE Patella", "29mm 32mm 35mm 38mm 41mm", "32mm 35mm"),
        },
    },
}


def implant_components(vendor: str, procedure_name: str) -> dict[str, ImplantSpec]:
    """Component specs for a joint procedure; robotic variants share the base implants."""
    base = procedure_name.replace("Mako ", "", 1)
    return IMPLANT_SPECS.get(vendor, {}).get(base, {})


# ------------------------------------------------------------
# Post-generation pass
# ------------------------------------------------------------
CANCELLATION_LEAD_MINUTES = (360, 1080)
DELAY_MINUTES = (5, 45)
COMPLEXITY_STANDARD = "Standard"
COMPLEXITY_COMPLEX = "Complex"
